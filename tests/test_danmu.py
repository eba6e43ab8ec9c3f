import json
import queue

import pytest

from danmurobot.danmu import DanmuLogic, parse_danmu
from danmurobot.robot import BulletRobot
from danmurobot.sender import Bullet, BulletSender
from danmurobot.service import Config, ReplyInfo, create_service_context, create_test_service_context


def _raw(text="hello[dog]", uid=12345, uname="viewer", medal=None, extra=None):
    if extra is None:
        extra = json.dumps({"id_str": "abc", "reply_mid": 0})
    info = [[0] * 15 + [{"extra": extra}], text, [uid, uname]]
    if medal is not None:
        info.append(medal)
    return json.dumps({"cmd": "DANMU_MSG", "info": info})


def _drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def _logic(service):
    sender = BulletSender(service, transport=lambda *args: None, delay=0)
    robot = BulletRobot(service, sender, chatgpt=lambda msg, cfg: "", qingyunke=lambda msg: "")
    return sender, robot, DanmuLogic(service, sender, robot)


def test_parse_danmu_fields():
    danmu = parse_danmu(_raw(medal=[5, "medal"]))
    assert danmu.text == "hello"
    assert danmu.uid == "12345"
    assert danmu.uname == "viewer"
    assert danmu.reply == ReplyInfo(reply_uid="12345", reply_msg_id="abc")
    assert danmu.medal_level == "5"
    assert danmu.medal_name == "medal"


def test_parse_danmu_without_medal():
    danmu = parse_danmu(_raw(medal=[]))
    assert (danmu.medal_level, danmu.medal_name) == ("0", "无信仰")


def test_parse_danmu_escaped_extra():
    danmu = parse_danmu(_raw(extra='{\\"id_str\\":\\"x1\\",\\"reply_mid\\":7,\\"reply_uname\\":\\"amy\\"}'))
    assert danmu.reply.reply_msg_id == "x1"
    assert danmu.reply_mid == 7
    assert danmu.reply_uname == "amy"


def test_parse_danmu_bad_extra_is_tolerated():
    danmu = parse_danmu(_raw(extra="not json"))
    assert danmu.reply.reply_msg_id == ""
    assert danmu.text == "hello"


def test_parse_danmu_accepts_mapping():
    assert parse_danmu(json.loads(_raw())).uid == "12345"


@pytest.mark.parametrize("raw", ["not json", json.dumps({"cmd": "DANMU_MSG"}), json.dumps({"info": [[], "x"]})])
def test_parse_danmu_rejects_malformed(raw):
    with pytest.raises(ValueError):
        parse_danmu(raw)


def test_handle_draw_by_lot_replies():
    service = create_test_service_context(Config(draw_by_lot=True, draw_lots_list=["大吉"]))
    sender, _, logic = _logic(service)
    logic.handle(_raw(text="抽签"))
    assert _drain(sender.queue) == [Bullet("大吉", ReplyInfo(reply_uid="12345", reply_msg_id="abc"))]


def test_handle_passes_addressed_danmu_to_robot():
    service = create_test_service_context(Config(talk_robot_cmd="小助手"))
    _, robot, logic = _logic(service)
    logic.handle(_raw(text="小助手你好"))
    assert _drain(robot.queue) == [Bullet("你好", ReplyInfo(reply_uid="12345", reply_msg_id="abc"))]


def test_handle_ignores_robot_own_danmu_for_robot():
    service = create_test_service_context(
        Config(talk_robot_cmd="小助手", draw_by_lot=True, draw_lots_list=["大吉"])
    )
    service.robot_id = "12345"
    sender, robot, logic = _logic(service)
    logic.handle(_raw(text="小助手抽签"))
    logic.handle(_raw(text="抽签"))
    assert _drain(robot.queue) == []
    assert [bullet.msg for bullet in _drain(sender.queue)] == ["大吉"]


def test_handle_anchor_command():
    service = create_test_service_context(Config(interact_word=True, entry_effect=True))
    service.user_id = 12345
    sender, _, logic = _logic(service)
    logic.handle(_raw(text="关闭欢迎弹幕"))
    assert service.config.interact_word is False
    assert service.autointeract.entry_effect is False
    assert _drain(sender.queue) == [Bullet("已临时关闭欢迎弹幕")]


def test_handle_keyword_reply():
    service = create_test_service_context(Config(keyword_reply=True, keyword_reply_list={"晚安": "好梦"}))
    sender, _, logic = _logic(service)
    danmu = logic.handle(_raw(text="大家晚安"))
    assert danmu.text == "大家晚安"
    assert [bullet.msg for bullet in _drain(sender.queue)] == ["好梦"]


def test_handle_counts_danmu(tmp_path):
    service = create_service_context(Config(db_path=str(tmp_path), room_id=1, danmu_cnt_enable=True))
    sender, _, logic = _logic(service)
    logic.handle(_raw(text="查询弹幕"))
    assert [bullet.msg for bullet in _drain(sender.queue)] == ["今/昨/前天各发送了：1，0，0条弹幕"]
    record = service.danmu_count_model.find_one(12345, service.danmu_count_model.date_str(0))
    assert record.count == 1


def test_handle_raises_on_malformed():
    service = create_test_service_context(Config())
    _, _, logic = _logic(service)
    with pytest.raises(ValueError):
        logic.handle("{}")