import queue

import pytest

from danmurobot.interact import InteractData, InteractGiver
from danmurobot.sender import Bullet, BulletSender
from danmurobot.service import Config, ReplyInfo, TimedWelcome, create_test_service_context
from danmurobot.welcome import (
    WelcomeHandler,
    in_list,
    in_wide,
    interact_message,
    interact_message_by_time,
    random_welcome,
    short_name,
    strip_welcome,
    time_key,
)


def _drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def _setup(**kwargs):
    service = create_test_service_context(Config(**kwargs))
    sender = BulletSender(service, transport=lambda *args: None, delay=0)
    interact = InteractGiver(service, sender)
    return service, sender, interact, WelcomeHandler(service, sender, interact)


@pytest.mark.parametrize(
    "hour, key",
    [
        (0, "midnight"),
        (1, "midnight"),
        (3, "earlymorning"),
        (8, "morning"),
        (10, "latemorning"),
        (12, "noon"),
        (19, "afternoon"),
        (23, "night"),
    ],
)
def test_time_key(hour, key):
    assert time_key(hour) == key


def test_time_key_rejects_bad_hour():
    with pytest.raises(ValueError):
        time_key(24)


def test_in_wide_and_in_list():
    assert in_wide("spam_bot_01", ["bot"]) is True
    assert in_wide("alice", ["bot"]) is False
    assert in_wide("alice", None) is False
    assert in_list("alice", ["bob", "alice"]) is True
    assert in_list("alic", ["bob", "alice"]) is False
    assert in_list("alice", None) is False


def test_short_name_keeps_short_names():
    assert short_name("bob", 3, 20) == "bob"


def test_short_name_shortens_to_fit():
    name = short_name("abcdefghijklmnop", 3, 10)
    assert len(name) == 10 - 3
    assert name.endswith("…")
    assert "abcdefghijklmnop".startswith(name[:-1])


def test_short_name_non_positive_room_keeps_name():
    assert short_name("abcdef", 8, 5) == "abcdef"


def test_strip_welcome_removes_first_only():
    assert strip_welcome("欢迎小明欢迎") == "小明欢迎"
    assert strip_welcome("小明") == "小明"


def test_interact_message_plain():
    service = create_test_service_context(Config(welcome_danmu=["欢迎 {user}"], danmu_len=20))
    assert interact_message(1, "bob", service) == "欢迎 bob"


def test_interact_message_use_at():
    service = create_test_service_context(
        Config(welcome_danmu=["欢迎 {user}，好久不见"], welcome_use_at=True)
    )
    assert interact_message(1, "bob", service) == "欢迎，好久不见"


def test_interact_message_too_long_splits_lines():
    service = create_test_service_context(Config(welcome_danmu=["欢迎{user}，来玩呀"], danmu_len=10))
    assert interact_message(1, "abcdefghijk", service) == "欢迎abcdefghijk\n\n来玩呀"


def test_interact_message_other_side_visitor():
    service = create_test_service_context(Config(welcome_danmu=["欢迎 {user}"], danmu_len=20))
    service.other_side_uid.add(7)
    assert interact_message(7, "bob", service) == "欢迎 bob 过来串门~"
    service.config.welcome_use_at = True
    assert interact_message(7, "bob", service) == "欢迎过来串门~"


def test_interact_message_other_side_long_name():
    service = create_test_service_context(Config(welcome_danmu=["x"], danmu_len=12))
    service.other_side_uid.add(7)
    assert interact_message(7, "abcdef", service) == "欢迎 ab… 过来串门~"


def test_by_time_uses_matching_list():
    service = create_test_service_context(
        Config(
            interact_word_by_time=True,
            welcome_danmu=["欢迎 {user}"],
            welcome_danmu_by_time=[TimedWelcome(key="noon", enabled=True, danmu=["午安 {user}"])],
        )
    )
    assert interact_message_by_time(1, "bob", service, hour=12) == "午安 bob"
    assert interact_message_by_time(1, "bob", service, hour=22) == "欢迎 bob"


def test_by_time_disabled_entry_falls_back():
    service = create_test_service_context(
        Config(
            interact_word_by_time=True,
            welcome_danmu=["欢迎 {user}"],
            welcome_danmu_by_time=[TimedWelcome(key="noon", enabled=False, danmu=["午安 {user}"])],
        )
    )
    assert interact_message_by_time(1, "bob", service, hour=12) == "欢迎 bob"


def test_by_time_use_at_drops_name():
    service = create_test_service_context(
        Config(
            interact_word_by_time=True,
            welcome_use_at=True,
            welcome_danmu=["x"],
            welcome_danmu_by_time=[TimedWelcome(key="noon", enabled=True, danmu=["午安 {user}"])],
        )
    )
    assert interact_message_by_time(1, "bob", service, hour=12) == "午安"


def test_random_welcome_plain_and_at():
    service = create_test_service_context(Config(welcome_danmu=["欢迎 {user}, 玩得开心"]))
    assert random_welcome("舰长 bob", service) == "欢迎 舰长 bob\n玩得开心"
    service.config.welcome_use_at = True
    assert random_welcome("舰长 bob", service) == "欢迎，玩得开心"


def test_random_welcome_by_time():
    service = create_test_service_context(
        Config(
            interact_word_by_time=True,
            welcome_danmu=["欢迎 {user}"],
            welcome_danmu_by_time=[TimedWelcome(key="night", enabled=True, danmu=["晚上好 {user}"])],
        )
    )
    assert random_welcome("bob", service, hour=21) == "晚上好 bob"
    assert random_welcome("bob", service, hour=9) == "欢迎 bob"


def test_random_welcome_without_templates_raises():
    service = create_test_service_context(Config(welcome_danmu=[]))
    with pytest.raises(IndexError):
        random_welcome("bob", service)


def test_interact_word_welcomes_entering_user():
    _, _, interact, handler = _setup(interact_word=True, welcome_danmu=["欢迎 {user}"])
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 42, "uname": "欢迎bob"}})
    assert _drain(interact.queue) == [InteractData(uid=42, msg="欢迎 bob")]


def test_interact_word_multiline_uses_offset_uids():
    _, _, interact, handler = _setup(interact_word=True, welcome_danmu=["欢迎{user}，来玩呀"], danmu_len=10)
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 100, "uname": "abcdefghijk"}})
    items = _drain(interact.queue)
    assert [item.uid for item in items] == [100, 101, 102]
    assert "\n".join(item.msg for item in items) == "欢迎abcdefghijk\n\n来玩呀"


def test_interact_word_blacklist_and_self():
    service, _, interact, handler = _setup(
        interact_word=True, welcome_danmu=["欢迎 {user}"], welcome_blacklist=["eve"], welcome_blacklist_wide=["bot"]
    )
    service.robot_id = "9"
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 1, "uname": "eve"}})
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 2, "uname": "mybot"}})
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 9, "uname": "robot"}})
    assert _drain(interact.queue) == []


def test_interact_word_custom_welcome():
    _, _, interact, handler = _setup(welcome_switch=True, welcome_string={"42": "老朋友来啦"})
    handler.on_interact_word({"data": {"msg_type": 1, "uid": 42, "uname": "bob"}})
    assert _drain(interact.queue) == [InteractData(uid=42, msg="老朋友来啦")]


def test_interact_word_thanks_follow():
    _, sender, _, handler = _setup(thanks_focus=True, focus_danmu=["常来玩"])
    handler.on_interact_word({"data": {"msg_type": 2, "uid": 42, "uname": "bob"}})
    assert _drain(sender.queue) == [Bullet("感谢 bob 的关注!"), Bullet("常来玩")]


def test_interact_word_thanks_share_with_at():
    _, sender, _, handler = _setup(thanks_share=True, welcome_use_at=True, focus_danmu=["常来玩"])
    handler.on_interact_word({"data": {"msg_type": 3, "uid": 42, "uname": "bob"}})
    assert _drain(sender.queue) == [Bullet("感谢分享!常来玩", ReplyInfo(reply_uid="42"))]


def test_interact_word_thanks_needs_name():
    _, sender, _, handler = _setup(thanks_focus=True, focus_danmu=["常来玩"])
    handler.on_interact_word({"data": {"msg_type": 5, "uid": 42, "uname": ""}})
    assert _drain(sender.queue) == []


def test_entry_effect_guard():
    _, _, interact, handler = _setup(entry_effect=True, welcome_danmu=["欢迎 {user}"])
    handler.on_entry_effect(
        {"data": {"uid": 5, "uinfo": {"guard": {"level": 3}, "base": {"name": "bob"}}}}
    )
    assert _drain(interact.queue) == [InteractData(uid=5, msg="欢迎 舰长 bob")]


def test_entry_effect_wealthy_threshold():
    _, _, interact, handler = _setup(
        entry_effect=True, welcome_high_wealthy=True, welcome_high_wealthy_level=20, welcome_danmu=["欢迎 {user}"]
    )
    handler.on_entry_effect({"data": {"uid": 5, "uinfo": {"base": {"name": "rich"}, "wealth": {"level": 25}}}})
    handler.on_entry_effect({"data": {"uid": 6, "uinfo": {"base": {"name": "poor"}, "wealth": {"level": 3}}}})
    assert _drain(interact.queue) == [InteractData(uid=5, msg="欢迎 rich")]


def test_entry_effect_disabled_and_anchor():
    service, _, interact, handler = _setup(entry_effect=False, welcome_danmu=["欢迎 {user}"])
    handler.on_entry_effect({"data": {"uid": 5, "uinfo": {"guard": {"level": 1}, "base": {"name": "bob"}}}})
    service.config.entry_effect = True
    service.user_id = 5
    handler.on_entry_effect({"data": {"uid": 5, "uinfo": {"guard": {"level": 1}, "base": {"name": "bob"}}}})
    assert _drain(interact.queue) == []