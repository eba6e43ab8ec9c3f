"""Welcome danmu for viewers entering the room, and thanks for follows and shares."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Iterable, Mapping

from .interact import InteractData, InteractGiver
from .sender import BulletSender
from .service import ReplyInfo, ServiceContext

PLACEHOLDER = "{user}"
VISITOR_TEMPLATE = "欢迎  过来串门~"
VISITOR_AT = "欢迎过来串门~"

_GUARD_TITLES = {1: "总督", 2: "提督", 3: "舰长"}
_TIME_KEYS = (
    (range(0, 2), "midnight"),
    (range(2, 5), "earlymorning"),
    (range(5, 9), "morning"),
    (range(9, 11), "latemorning"),
    (range(11, 14), "noon"),
    (range(14, 20), "afternoon"),
    (range(20, 24), "night"),
)
_SEPARATORS = (", ", ",", "，")

log = logging.getLogger(__name__)


def time_key(hour: int) -> str:
    """The key of the timed welcome list that covers ``hour``."""
    for hours, key in _TIME_KEYS:
        if hour in hours:
            return key
    raise ValueError(f"hour out of range: {hour}")


def _current_hour(hour: int | None) -> int:
    return datetime.now().hour if hour is None else hour


def _replace_separators(template: str, placeholder: str, replacement: str) -> str:
    for separator in _SEPARATORS:
        template = template.replace(placeholder + separator, replacement)
    return template


def random_welcome(msg: str, service: ServiceContext, hour: int | None = None) -> str:
    """Pick a welcome template, by time of day if configured, and put ``msg`` into it."""
    config = service.config
    text = ""
    if config.interact_word_by_time and config.welcome_danmu_by_time:
        key = time_key(_current_hour(hour))
        for entry in config.welcome_danmu_by_time:
            if entry.key == key:
                if entry.enabled and entry.danmu:
                    text = random.choice(entry.danmu)
                else:
                    text = random.choice(config.welcome_danmu)
                break
    else:
        text = random.choice(config.welcome_danmu)
    if not text:
        text = random.choice(config.welcome_danmu)

    if config.welcome_use_at:
        placeholder, replacement = " " + PLACEHOLDER, "，"
    else:
        placeholder, replacement = PLACEHOLDER, PLACEHOLDER + "\n"
    text = _replace_separators(text, placeholder, replacement)
    return text.replace(placeholder, msg)


def in_wide(target: str, words: Iterable[str] | None) -> bool:
    """Whether ``target`` contains any of ``words``."""
    return any(word in target for word in words or ())


def in_list(target: str, words: Iterable[str] | None) -> bool:
    """Whether ``target`` equals one of ``words``."""
    return target in set(words or ())


def short_name(uname: str, already_len: int, danmu_len: int) -> str:
    """Shorten ``uname`` with an ellipsis so it fits beside ``already_len`` characters."""
    max_len = danmu_len - already_len
    if len(uname) > max_len > 0:
        return uname[: max_len - 1] + "…"
    return uname


def strip_welcome(name: str) -> str:
    """Remove the first "欢迎" from a user name."""
    return name.replace("欢迎", "", 1)


def _visitor_message(uname: str, service: ServiceContext) -> str:
    config = service.config
    if config.welcome_use_at:
        return VISITOR_AT
    max_len = config.danmu_len - len(VISITOR_TEMPLATE)
    if len(uname) > max_len > 0:
        return "欢迎 " + uname[: max_len - 1] + "… 过来串门~"
    return "欢迎 " + uname + " 过来串门~"


def interact_message(uid: int, uname: str, service: ServiceContext) -> str:
    """The welcome for a user entering the room; lines are separate danmu."""
    config = service.config
    if uid in service.other_side_uid:
        return _visitor_message(uname, service)
    template = random.choice(config.welcome_danmu)
    if config.welcome_use_at:
        placeholder = " " + PLACEHOLDER
        return _replace_separators(template, placeholder, "，").replace(placeholder, "，")
    welcome = template.replace(PLACEHOLDER, short_name(uname, 3, config.danmu_len))
    if len(welcome) > config.danmu_len:
        split = PLACEHOLDER + "\n"
        text = _replace_separators(template, PLACEHOLDER, split).replace(PLACEHOLDER, split)
        return text.replace(PLACEHOLDER, uname)
    return welcome


def interact_message_by_time(
    uid: int, uname: str, service: ServiceContext, hour: int | None = None
) -> str:
    """The welcome from the list for the current time of day, falling back to the plain list."""
    config = service.config
    if uid in service.other_side_uid:
        return interact_message(uid, uname, service)
    if not (config.interact_word_by_time and config.welcome_danmu_by_time):
        return interact_message(uid, uname, service)
    key = time_key(_current_hour(hour))
    for entry in config.welcome_danmu_by_time:
        if entry.key != key:
            continue
        if not (entry.enabled and entry.danmu):
            return interact_message(uid, uname, service)
        template = random.choice(entry.danmu)
        if config.welcome_use_at:
            placeholder = " " + PLACEHOLDER
            return _replace_separators(template, placeholder, "，").replace(placeholder, "")
        welcome = template.replace(PLACEHOLDER, short_name(uname, 3, config.danmu_len))
        if len(welcome) > config.danmu_len:
            text = _replace_separators(template, PLACEHOLDER, PLACEHOLDER + "\n")
            return text.replace(PLACEHOLDER, uname)
        return welcome
    return interact_message(uid, uname, service)


def _body(data: Mapping[str, Any]) -> Mapping[str, Any]:
    inner = data.get("data")
    return inner if isinstance(inner, Mapping) else data


class WelcomeHandler:
    """Turns ENTRY_EFFECT and INTERACT_WORD events into welcomes and thanks."""

    def __init__(self, service: ServiceContext, sender: BulletSender, interact: InteractGiver) -> None:
        self.service = service
        self.sender = sender
        self.interact = interact

    def _skipped(self, uid: int) -> bool:
        config = self.service.config
        if not config.interact_self and str(uid) == self.service.robot_id:
            return True
        return not config.interact_anchor and uid == self.service.user_id

    def on_entry_effect(self, data: Mapping[str, Any]) -> None:
        """Welcome a guard or a wealthy user whose entry shows an effect."""
        config = self.service.config
        body = _body(data)
        uid = int(body.get("uid") or 0)
        if self._skipped(uid):
            return
        custom = config.welcome_string.get(str(uid))
        if config.welcome_switch and custom is not None and config.entry_effect:
            self.interact.push(InteractData(uid=uid, msg=custom))
            return
        if not config.entry_effect:
            return
        log.info("特效欢迎")
        uinfo = body.get("uinfo") or {}
        title = _GUARD_TITLES.get(int((uinfo.get("guard") or {}).get("level") or 0), "")
        name = str((uinfo.get("base") or {}).get("name") or "")
        msg = ""
        if title:
            msg = f"{title} {name}"
        elif config.welcome_high_wealthy:
            wealth = int((uinfo.get("wealth") or {}).get("level") or 0)
            if wealth >= config.welcome_high_wealthy_level:
                msg = name
        log.info("%s", msg)
        if msg:
            self.interact.push(InteractData(uid=uid, msg=random_welcome(msg, self.service)))

    def _thank(self, uid: int, uname: str, action: str, at_prefix: str) -> None:
        config = self.service.config
        if not uname:
            return
        if config.welcome_use_at:
            msg = at_prefix + random.choice(config.focus_danmu)
            self.sender.push(msg, ReplyInfo(reply_uid=str(uid)))
            return
        self.sender.push("感谢 " + short_name(uname, 8, config.danmu_len) + f" 的{action}!")
        if config.focus_danmu:
            self.sender.push(random.choice(config.focus_danmu))

    def on_interact_word(self, data: Mapping[str, Any]) -> None:
        """Welcome an entering user, or thank a follow or a share."""
        config = self.service.config
        body = _body(data)
        msg_type = int(body.get("msg_type") or 0)
        uid = int(body.get("uid") or 0)
        uname = str(body.get("uname") or "")

        if msg_type == 1:
            if self._skipped(uid):
                return
            custom = config.welcome_string.get(str(uid))
            if config.welcome_switch and custom is not None:
                self.interact.push(InteractData(uid=uid, msg=custom))
                return
            if not config.interact_word:
                return
            if in_wide(uname, config.welcome_blacklist_wide) or in_list(uname, config.welcome_blacklist):
                return
            if config.interact_word_by_time:
                msg = interact_message_by_time(uid, strip_welcome(uname), self.service)
                log.debug("%s", msg)
                self.interact.push(InteractData(uid=uid, msg=msg))
                return
            msg = interact_message(uid, strip_welcome(uname), self.service)
            lines = msg.split("\n")
            if len(lines) > 1:
                for offset, line in enumerate(lines):
                    self.interact.push(InteractData(uid=uid + offset, msg=line))
            else:
                self.interact.push(InteractData(uid=uid, msg=msg))
        elif msg_type in (2, 5):
            if config.thanks_focus:
                self._thank(uid, uname, "关注", "感谢关注!")
        elif msg_type == 3:
            if config.thanks_share:
                self._thank(uid, uname, "分享", "感谢分享!")
        else:
            log.info(">>>>>>>>>>>>> 未识别的类型: %s", data)