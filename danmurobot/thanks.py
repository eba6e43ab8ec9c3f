"""Gift thanks: gifts are collected for a while and thanked in one danmu per user."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .sender import BulletSender
from .service import ReplyInfo, ServiceContext

QUEUE_SIZE = 1000
GENEROUS_COST = 50000

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GiftEvent:
    """One SEND_GIFT event; prices are in milli-units."""

    uid: int
    uname: str
    gift_name: str
    price: int
    num: int
    original_gift_name: str = ""
    original_gift_price: int = 0

    @classmethod
    def from_message(cls, data: Mapping[str, Any]) -> "GiftEvent":
        """Read a SEND_GIFT message, or just its ``data`` part."""
        inner = data.get("data")
        body = inner if isinstance(inner, Mapping) else data
        blind = body.get("blind_gift") or {}
        return cls(
            uid=int(body.get("uid") or 0),
            uname=str(body.get("uname") or ""),
            gift_name=str(body.get("giftName") or ""),
            price=int(body.get("price") or 0),
            num=int(body.get("num") or 0),
            original_gift_name=str(blind.get("original_gift_name") or ""),
            original_gift_price=int(blind.get("original_gift_price") or 0),
        )


def thank_guard(sender: BulletSender, username: str, gift_name: str, reply: ReplyInfo | None = None) -> None:
    """Thank a user for buying a guard membership."""
    if reply is not None:
        sender.push("感谢" + gift_name, reply)
    else:
        sender.push("感谢 " + username + " 的 " + gift_name)


@dataclass
class _GiftTally:
    cost: int = 0
    count: int = 0


@dataclass
class _BlindTally:
    count: int = 0
    profit_and_loss: int = 0


class GiftThanksGiver:
    """Collects gifts per user and thanks them once the stream of gifts pauses."""

    def __init__(self, service: ServiceContext, sender: BulletSender) -> None:
        self.service = service
        self.sender = sender
        self.queue: queue.Queue[GiftEvent] = queue.Queue(maxsize=QUEUE_SIZE)
        self._lock = threading.RLock()
        self._uids: dict[str, int] = {}
        self._gifts: dict[str, dict[str, _GiftTally]] = {}
        self._blind: dict[str, dict[str, _BlindTally]] = {}
        self._blind_deadlines: dict[int, float] = {}
        self._deadline = time.monotonic() + self._timeout

    @property
    def _timeout(self) -> float:
        return float(self.service.config.thanks_gift_timeout)

    def push(self, gift: GiftEvent) -> None:
        """Queue a gift."""
        self.queue.put(gift)

    def add_gift(self, gift: GiftEvent) -> None:
        """Count a gift and, for blind boxes, its profit or loss."""
        config = self.service.config
        with self._lock:
            if config.thanks_gift_use_at:
                self._uids[gift.uname] = gift.uid
            name = gift.gift_name
            if gift.original_gift_name:
                name += "(" + gift.original_gift_name.replace("盲盒", "") + ")"
            tally = self._gifts.setdefault(gift.uname, {}).setdefault(name, _GiftTally())
            tally.cost += gift.price
            tally.count += gift.num
            now = time.monotonic()
            self._deadline = now + self._timeout

            if config.blind_box_profit_loss_stat and gift.original_gift_name:
                self._blind_deadlines[gift.uid] = now + self._timeout
                blind = self._blind.setdefault(gift.uname, {}).setdefault(
                    gift.original_gift_name, _BlindTally()
                )
                blind.count += gift.num
                blind.profit_and_loss += (gift.price - gift.original_gift_price) * gift.num

    def _reply_for(self, name: str) -> ReplyInfo:
        return ReplyInfo(reply_uid=str(self._uids.get(name, 0)), reply_msg_id="")

    def summarize_gifts(self) -> None:
        """Thank every user for the gifts collected so far and clear the tables."""
        config = self.service.config
        use_at = config.thanks_gift_use_at
        with self._lock:
            tables, self._gifts = self._gifts, {}
            for name, gifts in tables.items():
                short = "，".join(f"{tally.count}个{gift}" for gift, tally in gifts.items())
                total = sum(tally.cost for tally in gifts.values())
                msg = ("感谢" if use_at else f"感谢{name}的") + short
                reply = self._reply_for(name) if use_at else None
                if total < config.thanks_min_cost:
                    pass
                elif len(msg) > config.danmu_len:
                    if use_at:
                        self.sender.push(short, reply)
                    else:
                        self.sender.push(f"感谢 {name} 的")
                        self.sender.push(short)
                else:
                    self.sender.push(msg, reply)
                if total >= GENEROUS_COST:
                    self.sender.push(name + "老板大气大气")

    def summarize_blind_boxes(self) -> None:
        """Report each user's blind-box profit or loss and clear the table."""
        config = self.service.config
        use_at = config.thanks_gift_use_at
        with self._lock:
            tables, self._blind = self._blind, {}
            for name, boxes in tables.items():
                parts = []
                for box, tally in boxes.items():
                    amount = tally.profit_and_loss / 1000
                    if tally.profit_and_loss > 0:
                        parts.append(f"{tally.count}个{box}赚了＋{amount:.2f}元")
                    else:
                        parts.append(f"{tally.count}个{box}亏了－{abs(amount):.2f}元")
                short = "，".join(parts)
                msg = short if use_at else f"{name}的{short}"
                reply = self._reply_for(name) if use_at else None
                if len(msg) > config.danmu_len and not use_at:
                    self.sender.push(name + "的")
                    self.sender.push(short)
                else:
                    self.sender.push(msg, reply)

    def run(self, stop: threading.Event) -> None:
        """Collect queued gifts and thank when the timers run out, until ``stop`` is set."""
        while not stop.is_set():
            try:
                gift = self.queue.get(timeout=0.1)
            except queue.Empty:
                pass
            else:
                self.add_gift(gift)
            now = time.monotonic()
            if now >= self._deadline:
                self.summarize_gifts()
                self._deadline = now + self._timeout
            with self._lock:
                expired = [uid for uid, due in self._blind_deadlines.items() if now >= due]
                for uid in expired:
                    del self._blind_deadlines[uid]
                if expired:
                    self.summarize_blind_boxes()