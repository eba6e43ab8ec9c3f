# danmurobot

Building blocks for a chat bot in a live-streaming room. The bot welcomes viewers as they enter, thanks them for gifts, follows and shares, answers a small set of chat commands, and reports on the opposing room during a PK battle.

## Parts

- `danmurobot.service`: `Config`, a dataclass of every switch and list the bot reads, and `ServiceContext`, the shared state. `create_service_context(config)` opens the SQLite file `db_path/db_name` and attaches the per-room tables. `create_test_service_context(config)` builds a context without any database.
- `danmurobot.models`: the per-room SQLite tables `SignInModel`, `DanmuCountModel` and `BlindBoxStatModel`. A lookup that matches no row raises `RecordNotFound`.
- `danmurobot.api`: `ApiClient`, which posts danmu (`send`, three attempts) and queries rooms (`room_init`, `master_info`, `top_list`, `rank_list`, `danmu_token`). It also handles QR-code login (`login_url`, `poll_login`) and keeps the login cookies in a token directory (`has_saved_cookies`, `load_cookies`, `save_cookies`). Failures raise `ApiError`.
- `danmurobot.chatbots`: `request_chatgpt`, for any OpenAI-compatible chat completion endpoint, and `request_qingyunke`.
- `danmurobot.sender`: `BulletSender` queues outgoing danmu. It cuts them to `danmu_len` characters with `split_message` and sends each piece through a transport, pausing between pieces. When `send_enabled` is false it only logs the pieces.
- `danmurobot.robot`: `BulletRobot` passes questions to the configured chat robot (`robot_mode == "ChatGPT"` or Qingyunke) and queues its answers.
- `danmurobot.interact`: `InteractGiver` sends welcomes and welcomes each user at most once per window (10 s by default).
- `danmurobot.welcome`: `WelcomeHandler` turns `ENTRY_EFFECT` and `INTERACT_WORD` events into welcomes, using time-of-day lists, @-replies and blacklists. It also turns them into thanks for follows and shares.
- `danmurobot.thanks`: `GiftThanksGiver` gathers gifts and thanks each viewer once gifts have paused for `thanks_gift_timeout` seconds. It can also report blind-box profit and loss.
- `danmurobot.pk`: `PKWatcher` reports the opponent's guards, followers and online ranking. It remembers the opponent's fans so they are welcomed as visitors.
- `danmurobot.commands`: chat commands. These are sign-in (`签到` / `打卡`), daily danmu counts (`查询弹幕`), monthly blind-box results (`N月盲盒`), drawing lots (`抽签`), keyword replies, `@帮助`, and the streamer's `关闭欢迎弹幕` / `开启欢迎弹幕`.
- `danmurobot.danmu`: `parse_danmu` reads a `DANMU_MSG` event, and `DanmuLogic` runs every enabled command on it.
- `danmurobot.handlers`:
  - `load_config(path)` reads the YAML configuration. It expands `$VAR` and `${VAR}` from the environment and creates the database folder. Keys may be CamelCase or snake_case.
  - `RoomEventHandler.handle(command, raw)` routes room events to the parts above.
  - `CronDanmuRotator` picks the next timed danmu of an entry, either in turn or at random.
- `danmurobot.terminal_qr`: `render_bitmap` draws rows of dark and light modules with ANSI colours, optionally as a rainbow.

## Wiring it together

```python
import threading

from danmurobot.api import ApiClient
from danmurobot.danmu import DanmuLogic
from danmurobot.handlers import RoomEventHandler, load_config
from danmurobot.interact import InteractGiver
from danmurobot.pk import PKWatcher
from danmurobot.robot import BulletRobot
from danmurobot.sender import BulletSender
from danmurobot.service import create_service_context
from danmurobot.thanks import GiftThanksGiver
from danmurobot.welcome import WelcomeHandler

config = load_config("config.yaml")
service = create_service_context(config)

api = ApiClient(token_dir="token")
api.load_cookies()
service.robot_id = api.cookies.get("DedeUserID", "")
service.user_id = int(api.room_init(service.config.room_id).get("uid", 0))

sender = BulletSender(service, api.send)
robot = BulletRobot(service, sender)
interact = InteractGiver(service, sender)
gifts = GiftThanksGiver(service, sender)
pk = PKWatcher(service, api, sender)
danmu = DanmuLogic(service, sender, robot)
handler = RoomEventHandler(service, sender, WelcomeHandler(service, sender, interact), gifts, pk, danmu)

stop = threading.Event()
for worker in (sender, robot, interact, gifts, pk, danmu):
    threading.Thread(target=worker.run, args=(stop,), daemon=True).start()

# For every event from the room: handler.handle(event["cmd"], raw_json)
```

## Small examples

```python
from danmurobot.sender import split_message
from danmurobot.welcome import strip_welcome, time_key

split_message("abcdefghij", 4)   # ["abcd", "efgh", "ij"]
strip_welcome("欢迎小明")          # "小明"
time_key(21)                      # "night"
```

## What this package does not do

- It does not connect to the live room's event stream. You must receive the events yourself and pass each one to `RoomEventHandler.handle`.
- It has no command-line program. You start the workers yourself, as shown above.
- It does not schedule timed danmu. `CronDanmuRotator` only chooses which danmu to send; running the cron expressions is up to the caller.
- It does not encode QR codes. `render_bitmap` draws a bitmap that some other tool has produced, and `login_url` only returns the login URL to encode.