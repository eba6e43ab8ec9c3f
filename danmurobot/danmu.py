"""Incoming danmu: parsing and dispatch to the viewer and streamer commands."""

from __future__ import annotations

import json
import logging
import queue
import re
import threading
from dataclasses import dataclass
from typing import Any, Mapping

from . import commands
from .robot import BulletRobot
from .sender import BulletSender
from .service import ReplyInfo, ServiceContext

QUEUE_SIZE = 1000
NO_MEDAL = "无信仰"

_BRACKETS = re.compile(r"\[(.*?)\]")

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DanmuMessage:
    """A viewer's danmu with its sender and fan medal."""

    text: str
    uid: str
    uname: str
    reply: ReplyInfo
    medal_level: str = "0"
    medal_name: str = NO_MEDAL
    reply_mid: int = 0
    reply_uname: str = ""


def _whole(value: Any) -> str:
    return f"{float(value):.0f}"


def parse_danmu(raw: str | bytes | Mapping[str, Any]) -> DanmuMessage:
    """Read a DANMU_MSG event; raises ValueError when it is malformed."""
    if isinstance(raw, (str, bytes)):
        try:
            message = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"cannot decode danmu: {exc}") from exc
    else:
        message = raw
    try:
        info = message["info"]
        text = _BRACKETS.sub("", str(info[1]))
        sender_info = info[2]
        uid = _whole(sender_info[0])
        uname = str(sender_info[1])
        extra_text = str(info[0][15]["extra"]).replace('\\"', '"')
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError(f"malformed danmu message: {exc!r}") from exc

    try:
        extra = json.loads(extra_text)
        if not isinstance(extra, dict):
            raise ValueError(f"unexpected danmu extra: {extra_text!r}")
    except ValueError as exc:
        log.critical("%s", exc)
        extra = {}

    medal_level, medal_name = "0", NO_MEDAL
    if len(info) > 3 and isinstance(info[3], list) and len(info[3]) > 1:
        medal_level = _whole(info[3][0])
        medal_name = str(info[3][1])

    return DanmuMessage(
        text=text,
        uid=uid,
        uname=uname,
        reply=ReplyInfo(reply_uid=uid, reply_msg_id=str(extra.get("id_str") or "")),
        medal_level=medal_level,
        medal_name=medal_name,
        reply_mid=int(extra.get("reply_mid") or 0),
        reply_uname=str(extra.get("reply_uname") or ""),
    )


class DanmuLogic:
    """Parses queued danmu and runs every enabled command on them."""

    def __init__(self, service: ServiceContext, sender: BulletSender, robot: BulletRobot) -> None:
        self.service = service
        self.sender = sender
        self.robot = robot
        self.queue: queue.Queue[Any] = queue.Queue(maxsize=QUEUE_SIZE)

    def push(self, raw: str | bytes | Mapping[str, Any]) -> None:
        """Queue a raw DANMU_MSG event."""
        self.queue.put(raw)

    def handle(self, raw: str | bytes | Mapping[str, Any]) -> DanmuMessage:
        """Parse one danmu, run the enabled commands on it and return it."""
        danmu = parse_danmu(raw)
        service, sender, reply = self.service, self.sender, danmu.reply
        config = service.config
        text, uid = danmu.text, danmu.uid

        if text and uid != service.robot_id:
            commands.robot_process(text, service, sender, self.robot, reply)
            if config.danmu_cnt_enable:
                commands.badge_active_check(text, uid, service, sender, reply)
            if config.keyword_reply:
                commands.keyword_reply(text, service, sender, reply)
        if config.sign_in_enable:
            commands.sign_in(text, uid, service, sender, reply)
        if config.draw_by_lot:
            commands.draw_by_lot(text, service, sender, reply)
        if config.blind_box_stat:
            commands.blind_box_stat(text, uid, service, sender, reply)
        if text and uid == str(service.user_id):
            commands.anchor_command(text, uid, service, sender)

        shown = f"@{danmu.reply_uname} {text}" if danmu.reply_mid > 0 else text
        log.info("%s 「%s %s」%s:%s", uid, danmu.medal_level, danmu.medal_name, danmu.uname, shown)
        return danmu

    def run(self, stop: threading.Event) -> None:
        """Handle queued danmu until ``stop`` is set."""
        while not stop.is_set():
            try:
                raw = self.queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self.handle(raw)
            except ValueError as exc:
                log.error("%s", exc)