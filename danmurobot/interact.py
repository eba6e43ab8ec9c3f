"""Welcome messages, with each user welcomed at most once per window."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .sender import BulletSender
from .service import ReplyInfo, ServiceContext

QUEUE_SIZE = 1000

log = logging.getLogger(__name__)


@dataclass
class InteractData:
    """A welcome for one user; lines of ``msg`` are sent as separate danmu."""

    uid: int
    msg: str
    reply: ReplyInfo | None = None


class InteractGiver:
    """Sends welcomes and filters repeats for the same user within ``window`` seconds."""

    def __init__(
        self,
        service: ServiceContext,
        sender: BulletSender,
        window: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.sender = sender
        self.window = window
        self._clock = clock
        self._seen: dict[int, float] = {}
        self._lock = threading.Lock()
        self.queue: queue.Queue[InteractData] = queue.Queue(maxsize=QUEUE_SIZE)

    def push(self, data: InteractData) -> None:
        """Queue a welcome."""
        self.queue.put(data)

    def handle(self, data: InteractData) -> bool:
        """Send a welcome unless the user was welcomed recently; return whether it was sent."""
        log.info("[进房监听] 接收到用户：UID=%d，内容=%s", data.uid, data.msg)
        use_at = self.service.config.welcome_use_at
        with self._lock:
            now = self._clock()
            last = self._seen.get(data.uid)
            if last is not None and last + self.window >= now:
                log.debug("用户 %s 10秒内重复欢迎已被过滤", data.uid)
                return False
            for line in data.msg.split("\n"):
                if use_at:
                    data.reply = ReplyInfo(reply_uid=str(data.uid))
                    self.sender.push(line, data.reply)
                else:
                    self.sender.push(line)
            self._seen[data.uid] = now
        return True

    def purge(self) -> list[int]:
        """Forget users whose window has passed and return their uids."""
        with self._lock:
            now = self._clock()
            expired = [uid for uid, seen in self._seen.items() if seen + self.window < now]
            for uid in expired:
                del self._seen[uid]
                log.debug("用户 %s 已从重复过滤列表移除", uid)
        return expired

    def run(self, stop: threading.Event) -> None:
        """Handle queued welcomes and purge the filter until ``stop`` is set."""
        next_purge = self._clock() + self.window
        while not stop.is_set():
            try:
                data = self.queue.get(timeout=0.1)
            except queue.Empty:
                pass
            else:
                self.handle(data)
            if self._clock() >= next_purge:
                self.purge()
                next_purge = self._clock() + self.window