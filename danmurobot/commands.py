"""Commands viewers and the streamer can type into the danmu."""

from __future__ import annotations

import enum
import logging
import random
import re
import sqlite3
from datetime import date, datetime

from .models import BlindBoxStatRecord, DanmuCountRecord, RecordNotFound, SignInRecord
from .robot import BulletRobot
from .sender import BulletSender
from .service import ReplyInfo, ServiceContext
from .thanks import GiftEvent

SIGN_IN_ERROR = "签到服务异常"
BLIND_BOX_ERROR = "盲盒统计服务异常"
EMPTY_LOTS = "别抽签，抽主播!"

HELP_LINES = (
    "发送「签到/打卡」即可签到",
    "发送「查询弹幕」查询自己近三天的弹幕数",
    "发送「X月盲盒」查询在本直播间的盲盒盈亏",
    "发送「抽签」即可抽签",
    "主播发送「关闭欢迎弹幕」即可关闭欢迎弹幕",
    "主播发送「开启欢迎弹幕」即可开启欢迎弹幕",
    "本软件为永久免费软件",
)

_MONTH_QUERY = re.compile(r"([0-9]+)月盲盒")

log = logging.getLogger(__name__)


class AtMatch(enum.Enum):
    """How a danmu addresses the robot."""

    NONE = 0
    CONTAINED = 1
    HAS_PREFIX = 2


def badge_active_check(
    msg: str, uid: str, service: ServiceContext, sender: BulletSender, reply: ReplyInfo | None = None
) -> None:
    """Count the user's danmu for today and answer the three-day query."""
    model = service.danmu_count_model
    try:
        user = int(uid)
    except ValueError as exc:
        log.error("%s", exc)
        sender.push(SIGN_IN_ERROR, reply)
        return
    today = model.date_str(0)
    found = True
    try:
        record = model.find_one(user, today)
    except RecordNotFound:
        found = False
        try:
            model.insert(DanmuCountRecord(uid=user, date=today, count=1))
        except sqlite3.Error as exc:
            sender.push(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
    except sqlite3.Error as exc:
        log.error("%s", exc)
        return
    else:
        try:
            model.update_count(user)
        except sqlite3.Error as exc:
            sender.push(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        record.count += 1
        if record.count == 10:
            sender.push(f"好耶！今天发了{record.count}条弹幕了耶！", reply)

    if msg == "查询弹幕":
        counts = [record.count if found else 0]
        for days in (1, 2):
            try:
                counts.append(model.find_one(user, model.date_str(days)).count)
            except (RecordNotFound, sqlite3.Error):
                counts.append(0)
        sender.push("今/昨/前天各发送了：{}，{}，{}条弹幕".format(*counts), reply)


def save_blind_box_stat(gift: GiftEvent, service: ServiceContext) -> None:
    """Record an opened blind box; other gifts are ignored."""
    if not gift.original_gift_name:
        return
    today = date.today()
    try:
        service.blind_box_stat_model.insert(
            BlindBoxStatRecord(
                uid=gift.uid,
                blind_box_name=gift.original_gift_name,
                price=gift.price,
                original_gift_price=gift.original_gift_price,
                cnt=gift.num,
                year=today.year,
                month=today.month,
                day=today.day,
            )
        )
    except sqlite3.Error as exc:
        log.critical("保存盲盒数据出错!!! %s", exc)
    else:
        log.info("盲盒数据保存成功!!! ")


def blind_box_stat(
    msg: str, uid: str, service: ServiceContext, sender: BulletSender, reply: ReplyInfo | None = None
) -> None:
    """Answer "N月盲盒" with the blind-box result for that month of this year."""
    if not service.config.blind_box_stat:
        return
    match = _MONTH_QUERY.fullmatch(msg)
    if match is None:
        return
    month_text = match.group(1)
    month = int(month_text)
    if not 1 <= month <= 12:
        sender.push(f"月份「{month_text}」不正确!", reply)
        return
    try:
        user = int(uid)
    except ValueError as exc:
        log.error("%s", exc)
        sender.push(BLIND_BOX_ERROR, reply)
        return
    year = date.today().year
    model = service.blind_box_stat_model
    try:
        if service.user_id == user:
            result = model.total(year, month, 0)
        else:
            result = model.total_for_user(user, year, month, 0)
    except sqlite3.Error as exc:
        sender.push(BLIND_BOX_ERROR, reply)
        log.critical("盲盒统计出错了!%s", exc)
        return
    amount = result.r / 1000.0
    if result.r > 0:
        text = f"{month_text}月共开{result.c}个, 赚了＋{amount:.2f}元"
    elif result.r == 0:
        text = f"{month_text}月共开{result.c}个, 没亏没赚!"
    else:
        text = f"{month_text}月共开{result.c}个, 亏了－{abs(amount):.2f}元"
    sender.push(text, reply)


def anchor_command(msg: str, uid: str, service: ServiceContext, sender: BulletSender) -> None:
    """Let the streamer switch welcome danmu off or on."""
    if uid != str(service.user_id):
        return
    if msg == "关闭欢迎弹幕":
        enabled, notice = False, "已临时关闭欢迎弹幕"
    elif msg == "开启欢迎弹幕":
        enabled, notice = True, "已临时开启欢迎弹幕"
    else:
        return
    for switches in (service.config, service.autointeract):
        switches.interact_word = enabled
        switches.entry_effect = enabled
        switches.welcome_high_wealthy = enabled
    sender.push(notice)


def draw_by_lot(
    msg: str, service: ServiceContext, sender: BulletSender, reply: ReplyInfo | None = None
) -> None:
    """Answer "抽签" with a random lot."""
    if msg != "抽签":
        return
    lots = service.config.draw_lots_list
    sender.push(random.choice(lots) if lots else EMPTY_LOTS, reply)


def keyword_reply(
    msg: str, service: ServiceContext, sender: BulletSender, reply: ReplyInfo | None = None
) -> None:
    """Send the reply of the first configured keyword the danmu contains."""
    for keyword, answer in service.config.keyword_reply_list.items():
        if keyword in msg:
            sender.push(answer, reply)
            break


def check_is_at_me(msg: str, service: ServiceContext) -> AtMatch:
    """Whether, and how, the danmu addresses the chat robot."""
    command = service.config.talk_robot_cmd
    if command in msg and service.config.fuzzy_match_cmd:
        return AtMatch.CONTAINED
    if msg.startswith(command):
        return AtMatch.HAS_PREFIX
    return AtMatch.NONE


def robot_process(
    msg: str,
    service: ServiceContext,
    sender: BulletSender,
    robot: BulletRobot,
    reply: ReplyInfo | None = None,
) -> None:
    """Answer the help command and pass danmu addressed to the robot on to it."""
    command = service.config.talk_robot_cmd
    if msg == "@帮助":
        if command:
            sender.push(f"发送带有 {command} 的弹幕和我互动")
            sender.push("请尽情调戏我吧!")
        else:
            sender.push("互动聊天已禁用...")
        for line in HELP_LINES:
            sender.push(line)

    match = check_is_at_me(msg, service)
    if match is AtMatch.NONE:
        return
    if match is AtMatch.CONTAINED:
        content = msg.replace(command, "")
    else:
        content = msg.removeprefix(command)
    if content and command and msg != service.config.entry_msg:
        robot.push(content, reply)


def sign_in(
    msg: str, uid: str, service: ServiceContext, sender: BulletSender, reply: ReplyInfo | None = None
) -> None:
    """Answer "签到" or "打卡" with the user's sign-in streak."""
    if msg not in ("签到", "打卡"):
        return
    try:
        user = int(uid)
    except ValueError as exc:
        log.error("%s", exc)
        sender.push(SIGN_IN_ERROR, reply)
        return
    model = service.sign_in_model
    now = datetime.now()
    try:
        record = model.find_one(user)
    except RecordNotFound:
        try:
            model.insert(SignInRecord(uid=user, last_day=int(now.timestamp()), count=1))
        except sqlite3.Error as exc:
            sender.push(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        sender.push("已签到1天", reply)
        return
    except sqlite3.Error as exc:
        sender.push(SIGN_IN_ERROR, reply)
        log.error("%s", exc)
        return

    if datetime.fromtimestamp(record.last_day).date() != now.date():
        try:
            model.update_count(user)
        except sqlite3.Error as exc:
            sender.push(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        sender.push(f"已签到{record.count + 1}天", reply)
    else:
        sender.push(f"今天已经签到过了,已签到{record.count}天", reply)