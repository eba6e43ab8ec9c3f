"""Queue of outgoing danmu, cut to the room's length limit and posted one by one."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .api import ApiError
from .service import ReplyInfo, ServiceContext

QUEUE_SIZE = 1000

log = logging.getLogger(__name__)

Transport = Callable[[str, int, Optional[ReplyInfo]], None]


@dataclass(frozen=True)
class Bullet:
    """One danmu waiting to be sent, possibly as a reply."""

    msg: str
    reply: ReplyInfo | None = None


def split_message(msg: str, length: int) -> list[str]:
    """Cut ``msg`` into pieces of at most ``length`` characters."""
    if length <= 0:
        raise ValueError("danmu length must be positive")
    return [msg[start:start + length] for start in range(0, len(msg), length)]


class BulletSender:
    """Sends queued danmu through ``transport(msg, room_id, reply)``."""

    def __init__(self, service: ServiceContext, transport: Transport, delay: float = 1.0) -> None:
        self.service = service
        self.transport = transport
        self.delay = delay
        self.queue: queue.Queue[Bullet] = queue.Queue(maxsize=QUEUE_SIZE)

    def push(self, msg: str, reply: ReplyInfo | None = None) -> None:
        """Queue a danmu; blocks while the queue is full."""
        log.info("PushToBulletSender成功 %s", msg)
        self.queue.put(Bullet(msg, reply))

    def deliver(self, bullet: Bullet) -> list[str]:
        """Send every piece of one bullet and return the pieces handled."""
        config = self.service.config
        pieces = split_message(bullet.msg, config.danmu_len)
        for piece in pieces:
            if not config.send_enabled:
                log.info("[测试模式] 模拟发送弹幕：%s", piece)
            else:
                try:
                    self.transport(piece, config.room_id, bullet.reply)
                except ApiError as exc:
                    log.error("弹幕发送失败：%s msg: %s", exc, piece)
                else:
                    log.info("弹幕发送成功：%s", piece)
            time.sleep(self.delay)
        return pieces

    def run(self, stop: threading.Event) -> None:
        """Deliver queued bullets until ``stop`` is set."""
        while not stop.is_set():
            try:
                bullet = self.queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self.deliver(bullet)