"""Chat robot that answers danmu addressed to it."""

from __future__ import annotations

import functools
import logging
import queue
import re
import threading
from typing import Callable

import requests

from .api import ApiError
from .chatbots import request_chatgpt, request_qingyunke
from .sender import Bullet, BulletSender
from .service import Config, ReplyInfo, ServiceContext

FALLBACK_REPLY = "猴屁股要被玩坏啦(｡•́︿•̀｡) ♥"
QUEUE_SIZE = 1000

_FACE = re.compile(r"\{face:.*\}")

log = logging.getLogger(__name__)


def split_robot_reply(content: str, robot_name: str) -> list[str]:
    """Rename the robot, drop face markers and split on ``{br}``."""
    content = content.replace("菲菲", robot_name)
    content = _FACE.sub("", content)
    return content.split("{br}")


class BulletRobot:
    """Forwards questions to a chat robot and queues its answers."""

    def __init__(
        self,
        service: ServiceContext,
        sender: BulletSender,
        chatgpt: Callable[[str, Config], str] | None = None,
        qingyunke: Callable[[str], str] | None = None,
    ) -> None:
        self.service = service
        self.sender = sender
        session = requests.Session() if chatgpt is None or qingyunke is None else None
        self._chatgpt = chatgpt if chatgpt is not None else functools.partial(request_chatgpt, session)
        self._qingyunke = qingyunke if qingyunke is not None else functools.partial(request_qingyunke, session)
        self.queue: queue.Queue[Bullet] = queue.Queue(maxsize=QUEUE_SIZE)

    def push(self, content: str, reply: ReplyInfo | None = None) -> None:
        """Queue a question for the robot."""
        log.info("PushToBulletRobot成功：%s", content)
        self.queue.put(Bullet(content, reply))

    def handle(self, bullet: Bullet) -> None:
        """Ask the configured robot and queue its answer for sending."""
        config = self.service.config
        if config.robot_mode == "ChatGPT":
            try:
                answer = self._chatgpt(bullet.msg, config)
            except ApiError as exc:
                log.error("请求机器人失败：%s", exc)
                self.sender.push(FALLBACK_REPLY, bullet.reply)
                return
            self.sender.push(answer, bullet.reply)
            log.info("机器人回复：%s", answer)
            return
        try:
            answer = self._qingyunke(bullet.msg)
        except ApiError as exc:
            log.error("请求机器人失败：%s", exc)
            self.sender.push(FALLBACK_REPLY, bullet.reply)
            return
        for part in split_robot_reply(answer, config.robot_name):
            self.sender.push(part, bullet.reply)

    def run(self, stop: threading.Event) -> None:
        """Answer queued questions until ``stop`` is set."""
        while not stop.is_set():
            try:
                bullet = self.queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.handle(bullet)