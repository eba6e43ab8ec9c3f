"""Room events from the live danmu stream, and loading the robot's configuration."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import random
import re
import threading
import time
import types
import typing
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import yaml

from . import commands
from .api import ApiError
from .danmu import DanmuLogic
from .pk import PKWatcher
from .sender import BulletSender, split_message
from .service import ChatGPTConfig, Config, CronDanmu, ReplyInfo, ServiceContext, TimedWelcome
from .thanks import GiftEvent, GiftThanksGiver, thank_guard
from .welcome import WelcomeHandler

LOT_START_NOTICE = "识别到天选，欢迎弹幕已临时关闭"
LOT_END_NOTICE = "天选结束，欢迎弹幕已恢复默认"
RED_POCKET_START_NOTICE = "识别到红包，欢迎弹幕已临时关闭"
RED_POCKET_END_NOTICE = "红包结束，欢迎弹幕已恢复默认"

_ENV_VAR = re.compile(r"\$\{(\w+)\}|\$(\w+)")
_LIST_OF = re.compile(r"(?:list|List|Sequence|tuple)\[\s*(\w+)")
_KNOWN = {cls.__name__: cls for cls in (ChatGPTConfig, Config, CronDanmu, TimedWelcome)}

log = logging.getLogger(__name__)


# -- configuration -----------------------------------------------------


def _norm(name: str) -> str:
    return name.replace("_", "").lower()


def _dataclass_for(hint: Any) -> type | None:
    """The configuration dataclass a field's annotation names, if any."""
    if isinstance(hint, str):
        if _LIST_OF.search(hint):
            return None
        for token in re.findall(r"\w+", hint):
            if token in _KNOWN:
                return _KNOWN[token]
        return None
    if isinstance(hint, type) and dataclasses.is_dataclass(hint):
        return hint
    if typing.get_origin(hint) in (typing.Union, types.UnionType):
        for arg in typing.get_args(hint):
            found = _dataclass_for(arg)
            if found is not None:
                return found
    return None


def _item_class(hint: Any) -> type | None:
    """The dataclass held by a list annotation, if any."""
    if isinstance(hint, str):
        match = _LIST_OF.search(hint)
        return _KNOWN.get(match.group(1)) if match else None
    origin = typing.get_origin(hint)
    if origin in (typing.Union, types.UnionType):
        for arg in typing.get_args(hint):
            found = _item_class(arg)
            if found is not None:
                return found
        return None
    if origin in (list, Sequence, tuple):
        args = typing.get_args(hint)
        if args and isinstance(args[0], type) and dataclasses.is_dataclass(args[0]):
            return args[0]
    return None


def _convert(hint: Any, value: Any) -> Any:
    if value is None:
        return value
    cls = _dataclass_for(hint)
    if cls is not None and isinstance(value, Mapping):
        return _build(cls, value)
    if isinstance(value, list):
        item = _item_class(hint)
        if item is not None:
            return [_build(item, element) if isinstance(element, Mapping) else element for element in value]
        return list(value)
    if isinstance(value, Mapping):
        return dict(value)
    return value


def _build(cls: type, mapping: Mapping[str, Any]) -> Any:
    lookup = {_norm(str(key)): value for key, value in mapping.items()}
    kwargs = {}
    for field in dataclasses.fields(cls):
        if not field.init:
            continue
        key = _norm(field.name)
        if key in lookup:
            kwargs[field.name] = _convert(field.type, lookup[key])
    return cls(**kwargs)


def _expand_env(text: str) -> str:
    return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1) or m.group(2), ""), text)


def load_config(path: str | Path) -> Config:
    """Read the YAML configuration, expanding environment variables, and prepare the database folder."""
    text = _expand_env(Path(path).read_text(encoding="utf-8"))
    data = yaml.safe_load(text)
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"configuration in {path} is not a mapping")
    config = _build(Config, data)
    db_path = getattr(config, "db_path", "")
    if db_path:
        Path(db_path).mkdir(parents=True, exist_ok=True)
    return config


# -- event helpers -----------------------------------------------------


def _body(data: Mapping[str, Any]) -> Mapping[str, Any]:
    inner = data.get("data")
    return inner if isinstance(inner, Mapping) else data


def block_message(data: Mapping[str, Any]) -> str:
    """The announcement for a ROOM_BLOCK_MSG event."""
    body = _body(data)
    operator = int(body.get("operator") or 0)
    if operator == 2:
        who, action = "主播", "禁言"
    elif operator == 1:
        who, action = "房管", "禁言"
    else:
        who, action = "", "解开禁言"
    return f"用户 {body.get('uname', '')} 被{who} {action}!"


def pk_opponent_room(data: Mapping[str, Any], room_id: int) -> int:
    """The opponent's room in a PK start event, 0 when it is unknown."""
    body = _body(data)
    init_room = int((body.get("init_info") or {}).get("room_id") or 0)
    match_room = int((body.get("match_info") or {}).get("room_id") or 0)
    return match_room if init_room == room_id else init_room


def blind_box_notice(segments: Sequence[str]) -> str | None:
    """Thanks for a guard blind box announced in a common notice, or None."""
    if len(segments) == 5 and segments[1] == "投喂" and segments[2] == "大航海盲盒":
        return f"感谢 {segments[0]} 的 {segments[4]}"
    if len(segments) == 6 and segments[2] == "投喂" and segments[3] == "大航海盲盒":
        return f"感谢 {segments[1]} 的 {segments[5]}"
    return None


class CronDanmuRotator:
    """Chooses the next danmu of each timed danmu entry."""

    def __init__(self, entries: Sequence[Any]) -> None:
        self.entries = list(entries)
        self._sent: dict[int, int] = {}
        self._lock = threading.Lock()

    def pick(self, index: int) -> str | None:
        """The danmu to send for entry ``index``, at random or in turn; None when it has none."""
        entry = self.entries[index]
        danmu = list(entry.danmu or [])
        if not danmu:
            return None
        if entry.random:
            return random.choice(danmu)
        with self._lock:
            self._sent[index] = self._sent.get(index, 0) + 1
            return danmu[self._sent[index] % len(danmu)]


# -- dispatch ----------------------------------------------------------


class RoomEventHandler:
    """Routes room events to the robot's features."""

    def __init__(
        self,
        service: ServiceContext,
        sender: BulletSender,
        welcome: WelcomeHandler,
        gifts: GiftThanksGiver,
        pk: PKWatcher,
        danmu: DanmuLogic,
    ) -> None:
        self.service = service
        self.sender = sender
        self.welcome = welcome
        self.gifts = gifts
        self.pk = pk
        self.danmu = danmu
        self._red_pockets = 0
        self._lock = threading.Lock()
        # PREPARING is handled by say_goodbye when the stream stops, not from the stream.
        self._routes: dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "ENTRY_EFFECT": welcome.on_entry_effect,
            "INTERACT_WORD": welcome.on_interact_word,
            "ANCHOR_LOT_START": self.anchor_lot_start,
            "ANCHOR_LOT_AWARD": self.anchor_lot_award,
            "PK_BATTLE_START_NEW": self.pk_start,
            "PK_BATTLE_START": self.pk_start,
            "PK_BATTLE_END": self.pk_end,
            "PK_END": self.pk_end,
            "PK_BATTLE_CRIT": self.pk_end,
            "PK_BATTLE_SETTLE_NEW": self.pk_end,
            "ROOM_BLOCK_MSG": self.room_block,
            "SEND_GIFT": self.send_gift,
            "GUARD_BUY": self.guard_buy,
            "COMMON_NOTICE_DANMAKU": self.common_notice,
            "POPULARITY_RED_POCKET_NEW": self.red_pocket,
            "POPULARITY_RED_POCKET_WINNER_LIST": self.red_pocket_winners,
        }

    @property
    def open_red_pockets(self) -> int:
        """Red pockets announced and not yet drawn."""
        return self._red_pockets

    def handle(self, command: str, raw: str | bytes | Mapping[str, Any]) -> bool:
        """Process one event; return whether the command is one the robot handles."""
        if command == "DANMU_MSG":
            self.danmu.push(raw)
            return True
        route = self._routes.get(command)
        if route is None:
            log.debug("接收到未知事件数据: %s", raw)
            return False
        if isinstance(raw, (str, bytes)):
            try:
                data = json.loads(raw)
            except ValueError as exc:
                log.error("%s 数据解析失败: %s", command, exc)
                return False
        else:
            data = raw
        if not isinstance(data, Mapping):
            log.error("%s 数据解析失败: %r", command, raw)
            return False
        route(data)
        return True

    # -- welcome switches ---------------------------------------------

    def _welcome_on(self) -> bool:
        config = self.service.config
        return config.interact_word or config.entry_effect or config.welcome_high_wealthy

    def _disable_welcome(self) -> None:
        config = self.service.config
        config.interact_word = False
        config.entry_effect = False
        config.welcome_high_wealthy = False

    def _restore_welcome(self) -> None:
        config, defaults = self.service.config, self.service.autointeract
        config.interact_word = defaults.interact_word
        config.entry_effect = defaults.entry_effect
        config.welcome_high_wealthy = defaults.welcome_high_wealthy

    def anchor_lot_start(self, data: Mapping[str, Any]) -> None:
        """A lottery began: pause the welcome danmu."""
        if self._welcome_on():
            self._disable_welcome()
        self.sender.push(LOT_START_NOTICE)

    def anchor_lot_award(self, data: Mapping[str, Any]) -> None:
        """The lottery was drawn: restore the welcome danmu."""
        self._restore_welcome()
        self.sender.push(LOT_END_NOTICE)

    # -- moderation and stream state -----------------------------------

    def room_block(self, data: Mapping[str, Any]) -> None:
        """Announce a muted user when configured."""
        if self.service.config.show_block_msg:
            self.sender.push(block_message(data))

    def preparing(self, data: Mapping[str, Any]) -> None:
        """Say goodbye in one danmu when the stream ends."""
        goodbye = self.service.config.goodbye_info
        if goodbye:
            self.sender.push(goodbye)

    def say_goodbye(self) -> list[str]:
        """Send the goodbye directly, piece by piece, and return the pieces."""
        config = self.service.config
        if not config.goodbye_info:
            return []
        pieces = split_message(config.goodbye_info, config.danmu_len)
        for piece in pieces:
            try:
                self.sender.transport(piece, config.room_id, None)
            except ApiError as exc:
                log.error("下播弹幕发送失败：%s msg: %s", exc, piece)
            time.sleep(self.sender.delay)
        return pieces

    # -- PK ------------------------------------------------------------

    def pk_start(self, data: Mapping[str, Any]) -> None:
        """Queue the opponent for a report when PK notices are on."""
        if not self.service.config.pk_notice:
            return
        room = pk_opponent_room(data, self.service.config.room_id)
        log.debug("开始pk")
        if room == 0:
            log.error("未获取的pk对手信息")
            return
        self.pk.push(room)

    def pk_end(self, data: Mapping[str, Any]) -> None:
        """Forget the opponent's fans."""
        self.service.other_side_uid.clear()

    # -- gifts ---------------------------------------------------------

    def send_gift(self, data: Mapping[str, Any]) -> None:
        """Collect a gift for thanks and record blind boxes."""
        gift = GiftEvent.from_message(data)
        if self.service.config.thanks_gift:
            self.gifts.push(gift)
        commands.save_blind_box_stat(gift, self.service)

    def guard_buy(self, data: Mapping[str, Any]) -> None:
        """Thank a new guard."""
        config = self.service.config
        if not config.thanks_gift:
            return
        body = _body(data)
        reply = ReplyInfo(reply_uid=str(int(body.get("uid") or 0))) if config.thanks_gift_use_at else None
        thank_guard(self.sender, str(body.get("username") or ""), str(body.get("gift_name") or ""), reply)

    def common_notice(self, data: Mapping[str, Any]) -> None:
        """Thank guard blind boxes announced in a common notice."""
        if not self.service.config.thanks_gift:
            return
        segments = [
            str(segment.get("text") or "") if isinstance(segment, Mapping) else str(segment)
            for segment in _body(data).get("content_segments") or []
        ]
        notice = blind_box_notice(segments)
        if notice is not None:
            self.sender.push(notice)

    def red_pocket(self, data: Mapping[str, Any]) -> None:
        """Thank a red pocket and pause the welcome danmu while it runs."""
        config = self.service.config
        body = _body(data)
        with self._lock:
            self._red_pockets += 1
        uname = str(body.get("uname") or "")
        price = int(body.get("price") or 0)
        gift_name = str(body.get("gift_name") or "")
        if config.thanks_gift:
            if config.thanks_gift_use_at:
                self.sender.push(
                    f"感谢 {price} 电池的 {gift_name}",
                    ReplyInfo(reply_uid=str(int(body.get("uid") or 0))),
                )
            else:
                self.sender.push(f"感谢 {uname} {price}电池的 {gift_name}")
        if self._welcome_on():
            self._disable_welcome()
            config.lottery_enable = False
            self.sender.push(RED_POCKET_START_NOTICE)

    def red_pocket_winners(self, data: Mapping[str, Any]) -> None:
        """Log the winners and restore the welcome danmu once no red pocket is left."""
        with self._lock:
            self._red_pockets = max(self._red_pockets - 1, 0)
            remaining = self._red_pockets
        log.info("中奖名单:")
        for winner in _body(data).get("winner_info") or []:
            if isinstance(winner, list) and len(winner) >= 2:
                try:
                    log.info(" >>> %.0f %s", float(winner[0]), winner[1])
                except (TypeError, ValueError):
                    log.info(" >>> %s %s", winner[0], winner[1])
        if remaining <= 0:
            self._restore_welcome()
            self.sender.push(RED_POCKET_END_NOTICE)
            with self._lock:
                self._red_pockets = 0