"""SQLite-backed per-room tables: sign-ins, daily danmu counts and blind-box statistics."""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Sequence


class RecordNotFound(LookupError):
    """Raised when a query matches no row."""


@dataclass
class SignInRecord:
    uid: int
    last_day: int
    count: int
    id: int | None = None


@dataclass
class DanmuCountRecord:
    uid: int
    date: str
    count: int
    id: int | None = None


@dataclass
class BlindBoxStatRecord:
    uid: int
    blind_box_name: str
    price: int
    original_gift_price: int
    cnt: int
    year: int
    month: int
    day: int
    id: int | None = None


@dataclass(frozen=True)
class BlindBoxResult:
    """Number of boxes opened (c) and profit or loss in milli-units (r)."""

    c: int
    r: int


class _RoomTable:
    """A table holding one kind of record for one live room."""

    _prefix = ""
    _schema = ""
    _columns: tuple[str, ...] = ()

    def __init__(self, conn: sqlite3.Connection, room_id: int) -> None:
        self._conn = conn
        self.table = f"{self._prefix}_{int(room_id)}"
        with self._conn:
            self._conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} "
                f"(id INTEGER PRIMARY KEY AUTOINCREMENT, {self._schema})"
            )

    def _save(self, record: Any) -> None:
        values = [getattr(record, column) for column in self._columns]
        names = ", ".join(self._columns)
        with self._conn:
            if record.id is None:
                marks = ", ".join("?" for _ in self._columns)
                cursor = self._conn.execute(
                    f"INSERT INTO {self.table} ({names}) VALUES ({marks})", values
                )
                record.id = cursor.lastrowid
            else:
                marks = ", ".join("?" for _ in range(len(self._columns) + 1))
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {self.table} (id, {names}) VALUES ({marks})",
                    [record.id, *values],
                )

    def _select(self, where: str, params: Sequence[Any], suffix: str = "") -> list[tuple]:
        names = ", ".join(("id", *self._columns))
        cursor = self._conn.execute(
            f"SELECT {names} FROM {self.table} WHERE {where} {suffix}", params
        )
        return cursor.fetchall()


class SignInModel(_RoomTable):
    """Sign-in streaks, one row per user."""

    _prefix = "room"
    _schema = "uid INTEGER, last_day INTEGER, count INTEGER"
    _columns = ("uid", "last_day", "count")

    def __init__(self, conn: sqlite3.Connection, room_id: int) -> None:
        super().__init__(conn, room_id)

    def insert(self, record: SignInRecord) -> None:
        self._save(record)

    def find_one(self, uid: int) -> SignInRecord:
        rows = self._select("uid = ?", (uid,), "LIMIT 1")
        if not rows:
            raise RecordNotFound(f"no sign-in record for uid {uid}")
        row_id, row_uid, last_day, count = rows[0]
        return SignInRecord(uid=row_uid, last_day=last_day, count=count, id=row_id)

    def update_count(self, uid: int) -> None:
        with self._conn:
            self._conn.execute(
                f"UPDATE {self.table} SET count = count + 1, last_day = ? WHERE uid = ?",
                (int(time.time()), uid),
            )


class DanmuCountModel(_RoomTable):
    """Number of danmu each user sent per day."""

    _prefix = "danmu"
    _schema = "uid INTEGER, date TEXT, count INTEGER"
    _columns = ("uid", "date", "count")

    def __init__(self, conn: sqlite3.Connection, room_id: int) -> None:
        super().__init__(conn, room_id)

    def date_str(self, days_from_today: int) -> str:
        """The local date so many days before today, as YYYY-MM-DD."""
        return (date.today() - timedelta(days=days_from_today)).isoformat()

    def insert(self, record: DanmuCountRecord) -> None:
        self._save(record)

    @staticmethod
    def _record(row: tuple) -> DanmuCountRecord:
        row_id, uid, day, count = row
        return DanmuCountRecord(uid=uid, date=day, count=count, id=row_id)

    def find_one(self, uid: int, date: str) -> DanmuCountRecord:
        rows = self._select("uid = ? AND date = ?", (uid, date), "LIMIT 1")
        if not rows:
            raise RecordNotFound(f"no danmu count for uid {uid} on {date}")
        return self._record(rows[0])

    def recent_three_days(self, uid: int) -> list[DanmuCountRecord]:
        rows = self._select(
            "uid = ? AND date BETWEEN ? AND ?",
            (uid, self.date_str(2), self.date_str(0)),
            "ORDER BY date ASC",
        )
        if not rows:
            raise RecordNotFound(f"no danmu counts for uid {uid} in the last three days")
        return [self._record(row) for row in rows]

    def update_count(self, uid: int) -> None:
        with self._conn:
            self._conn.execute(
                f"UPDATE {self.table} SET count = count + 1 WHERE uid = ? AND date = ?",
                (uid, self.date_str(0)),
            )


class BlindBoxStatModel(_RoomTable):
    """Every opened blind box with its outcome."""

    _prefix = "blind"
    _schema = (
        "uid INTEGER, blind_box_name TEXT, price INTEGER, original_gift_price INTEGER, "
        "cnt INTEGER, year INTEGER, month INTEGER, day INTEGER"
    )
    _columns = (
        "uid",
        "blind_box_name",
        "price",
        "original_gift_price",
        "cnt",
        "year",
        "month",
        "day",
    )

    def __init__(self, conn: sqlite3.Connection, room_id: int) -> None:
        super().__init__(conn, room_id)

    def insert(self, record: BlindBoxStatRecord) -> None:
        self._save(record)

    def _total(self, conditions: list[str], params: list[Any], year: int, month: int, day: int) -> BlindBoxResult:
        for column, value in (("year", year), ("month", month), ("day", day)):
            if value > 0:
                conditions.append(f"{column} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        row = self._conn.execute(
            "SELECT COALESCE(SUM(cnt), 0), "
            "COALESCE(SUM(cnt * price), 0) - COALESCE(SUM(cnt * original_gift_price), 0) "
            f"FROM {self.table}{where}",
            params,
        ).fetchone()
        return BlindBoxResult(c=int(row[0]), r=int(row[1]))

    def total_for_user(self, uid: int, year: int = 0, month: int = 0, day: int = 0) -> BlindBoxResult:
        """Totals for one user; a zero year, month or day is not filtered on."""
        return self._total(["uid = ?"], [uid], year, month, day)

    def total(self, year: int = 0, month: int = 0, day: int = 0) -> BlindBoxResult:
        """Totals over every user; a zero year, month or day is not filtered on."""
        return self._total([], [], year, month, day)