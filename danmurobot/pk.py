"""Opponent report at the start of a PK battle."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Protocol

from .api import ApiError
from .sender import BulletSender
from .service import ServiceContext

QUEUE_SIZE = 1000
RANK_PAGE_SIZE = 50
FAILURE_NOTICE = "PK信息获取失败!"

log = logging.getLogger(__name__)


class RoomApi(Protocol):
    def master_info(self, room_id: int) -> dict[str, Any]: ...

    def top_list(self, room_id: int, user_id: int, page: int) -> dict[str, Any]: ...

    def rank_list(self, room_id: int, user_id: int, page: int) -> dict[str, Any]: ...


class PKWatcher:
    """Reports each PK opponent once per ``window`` seconds and remembers its fans."""

    def __init__(
        self,
        service: ServiceContext,
        api: RoomApi,
        sender: BulletSender,
        window: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.api = api
        self.sender = sender
        self.window = window
        self._clock = clock
        self._seen: dict[int, float] = {}
        self._lock = threading.Lock()
        self.queue: queue.Queue[int] = queue.Queue(maxsize=QUEUE_SIZE)

    def push(self, room_id: int) -> None:
        """Queue the opponent's room."""
        self.queue.put(room_id)

    def handle(self, room_id: int) -> bool:
        """Report the opponent unless it was reported recently; return whether it was."""
        with self._lock:
            now = self._clock()
            last = self._seen.get(room_id)
            if last is not None and last + self.window >= now:
                log.debug("pk room %s 10秒内重复获取数据已被过滤", room_id)
                return False
            log.debug("正在处理pk信息")
            self.report_opponent(room_id)
            self._seen[room_id] = self._clock()
        log.debug("pk room %s 已进入重复过滤列表", room_id)
        return True

    def _purge(self) -> None:
        with self._lock:
            now = self._clock()
            for room_id in [r for r, seen in self._seen.items() if seen + self.window < now]:
                del self._seen[room_id]
                log.debug("pk room %s 已从重复过滤列表移除", room_id)

    def report_opponent(self, room_id: int) -> None:
        """Collect the opponent's guards and ranking, remember their uids and announce a summary."""
        try:
            info = self.api.master_info(room_id)
        except ApiError as exc:
            log.error("%s", exc)
            return
        streamer = info.get("info") or {}
        streamer_uid = int(streamer.get("uid") or 0)

        try:
            top = self.api.top_list(room_id, streamer_uid, 1)
        except ApiError as exc:
            log.error("%s", exc)
            self.sender.push(FAILURE_NOTICE)
            return
        top_info = top.get("info") or {}
        guards = list(top.get("list") or [])
        for page in range(2, int(top_info.get("page") or 1) + 1):
            try:
                guards.extend(self.api.top_list(room_id, streamer_uid, page).get("list") or [])
            except ApiError as exc:
                log.error("%s", exc)

        other_side = self.service.other_side_uid
        other_side.clear()
        other_side.update(int(guard.get("uid") or 0) for guard in guards)

        try:
            rank = self.api.rank_list(room_id, streamer_uid, 1)
        except ApiError as exc:
            self.sender.push(FAILURE_NOTICE)
            log.error("%s", exc)
            return
        items = list(rank.get("OnlineRankItem") or [])
        online_num = int(rank.get("onlineNum") or 0)
        rank_score = sum(int(item.get("score") or 0) for item in items)
        guards_online = sum(1 for item in items if int(item.get("guard_level") or 0) > 0)
        other_side.update(int(item.get("uid") or 0) for item in items)

        if items and len(items) < online_num:
            total_pages = online_num // len(items)
            if online_num % RANK_PAGE_SIZE > 0:
                total_pages += 1
            for page in range(2, total_pages + 1):
                try:
                    extra = self.api.rank_list(room_id, streamer_uid, page).get("OnlineRankItem") or []
                except ApiError as exc:
                    log.error("%s", exc)
                    continue
                for item in extra:
                    if int(item.get("guard_level") or 0) > 0:
                        guards_online += 1
                    other_side.add(int(item.get("uid") or 0))

        self.sender.push(f"当前对手:{streamer.get('uname', '')}")
        self.sender.push(f"共{top_info.get('num', 0)}船，{info.get('follower_num', 0)}粉")
        self.sender.push(f"当前{guards_online}船在线，高能榜{online_num}人")
        self.sender.push(f"榜前50贡献{rank_score}分")

    def run(self, stop: threading.Event) -> None:
        """Handle queued PK rooms and purge the filter until ``stop`` is set."""
        next_purge = self._clock() + self.window
        while not stop.is_set():
            try:
                room_id = self.queue.get(timeout=0.1)
            except queue.Empty:
                pass
            else:
                self.handle(room_id)
            if self._clock() >= next_purge:
                self._purge()
                next_purge = self._clock() + self.window