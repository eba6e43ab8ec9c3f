import sqlite3
import time
from datetime import date, timedelta

import pytest

from danmurobot.models import (
    BlindBoxResult,
    BlindBoxStatModel,
    BlindBoxStatRecord,
    DanmuCountModel,
    DanmuCountRecord,
    RecordNotFound,
    SignInModel,
    SignInRecord,
)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


def _box(uid, price, original, cnt, year=2024, month=5, day=1):
    return BlindBoxStatRecord(
        uid=uid,
        blind_box_name="box",
        price=price,
        original_gift_price=original,
        cnt=cnt,
        year=year,
        month=month,
        day=day,
    )


def test_sign_in_table_name_uses_room(conn):
    assert SignInModel(conn, 42).table == "room_42"
    assert DanmuCountModel(conn, 42).table == "danmu_42"
    assert BlindBoxStatModel(conn, 42).table == "blind_42"


def test_sign_in_insert_and_find(conn):
    model = SignInModel(conn, 1)
    record = SignInRecord(uid=77, last_day=1700000000, count=1)
    model.insert(record)
    assert record.id is not None
    found = model.find_one(77)
    assert found == record


def test_sign_in_missing_raises(conn):
    model = SignInModel(conn, 1)
    with pytest.raises(RecordNotFound):
        model.find_one(5)


def test_sign_in_update_count(conn):
    model = SignInModel(conn, 1)
    model.insert(SignInRecord(uid=9, last_day=0, count=4))
    before = int(time.time())
    model.update_count(9)
    found = model.find_one(9)
    assert found.count == 5
    assert found.last_day >= before


def test_sign_in_save_existing_replaces(conn):
    model = SignInModel(conn, 1)
    record = SignInRecord(uid=3, last_day=10, count=1)
    model.insert(record)
    record.count = 8
    model.insert(record)
    assert model.find_one(3).count == 8


def test_rooms_are_separate(conn):
    first = SignInModel(conn, 1)
    second = SignInModel(conn, 2)
    first.insert(SignInRecord(uid=1, last_day=0, count=1))
    with pytest.raises(RecordNotFound):
        second.find_one(1)


def test_date_str(conn):
    model = DanmuCountModel(conn, 1)
    assert model.date_str(0) == date.today().isoformat()
    assert model.date_str(2) == (date.today() - timedelta(days=2)).isoformat()


def test_danmu_count_find_and_update(conn):
    model = DanmuCountModel(conn, 1)
    today = model.date_str(0)
    model.insert(DanmuCountRecord(uid=5, date=today, count=1))
    model.update_count(5)
    assert model.find_one(5, today).count == 2
    with pytest.raises(RecordNotFound):
        model.find_one(5, model.date_str(1))


def test_danmu_update_only_touches_today(conn):
    model = DanmuCountModel(conn, 1)
    yesterday = model.date_str(1)
    model.insert(DanmuCountRecord(uid=5, date=yesterday, count=3))
    model.update_count(5)
    assert model.find_one(5, yesterday).count == 3


def test_recent_three_days_ordered_and_windowed(conn):
    model = DanmuCountModel(conn, 1)
    for days in (0, 3, 2, 1):
        model.insert(DanmuCountRecord(uid=8, date=model.date_str(days), count=days + 1))
    records = model.recent_three_days(8)
    assert [r.date for r in records] == [model.date_str(2), model.date_str(1), model.date_str(0)]


def test_recent_three_days_empty_raises(conn):
    model = DanmuCountModel(conn, 1)
    with pytest.raises(RecordNotFound):
        model.recent_three_days(8)


def test_blind_box_empty_total(conn):
    model = BlindBoxStatModel(conn, 1)
    assert model.total(2024, 5, 0) == BlindBoxResult(c=0, r=0)


def test_blind_box_single_record_profit(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, price=500, original=200, cnt=1))
    result = model.total_for_user(1, 2024, 5, 0)
    assert result.c == 1
    assert result.r == 500 - 200


def test_blind_box_total_is_sum_of_users(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, price=100, original=150, cnt=2))
    model.insert(_box(uid=2, price=900, original=150, cnt=1))
    model.insert(_box(uid=1, price=50, original=150, cnt=3))
    first = model.total_for_user(1, 2024, 5, 0)
    second = model.total_for_user(2, 2024, 5, 0)
    overall = model.total(2024, 5, 0)
    assert overall.c == first.c + second.c
    assert overall.r == first.r + second.r


def test_blind_box_filters(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, price=100, original=100, cnt=2, month=5))
    model.insert(_box(uid=1, price=100, original=100, cnt=4, month=6))
    model.insert(_box(uid=1, price=100, original=100, cnt=8, year=2023, month=5))
    assert model.total_for_user(1, 2024, 5, 0).c == 2
    assert model.total_for_user(1, 0, 5, 0).c == 2 + 8
    assert model.total_for_user(1, 0, 0, 0).c == 2 + 4 + 8
    assert model.total_for_user(1, 2024, 5, 2).c == 0