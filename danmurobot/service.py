"""Configuration and the shared state every part of the robot works on."""

from __future__ import annotations

import copy
import sqlite3
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

from .models import BlindBoxStatModel, DanmuCountModel, SignInModel


def _matching_fields(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    """Map keys such as ``RoomId`` or ``room_id`` onto dataclass field names."""
    names = {f.name.replace("_", "").lower(): f.name for f in fields(cls)}
    values: dict[str, Any] = {}
    for key, value in data.items():
        name = names.get(str(key).replace("_", "").lower())
        if name is not None and value is not None:
            values[name] = value
    return values


@dataclass(frozen=True)
class ReplyInfo:
    """Whom a danmu replies to, and optionally which message."""

    reply_uid: str
    reply_msg_id: str = ""


@dataclass
class CronDanmu:
    cron: str = ""
    danmu: list[str] = field(default_factory=list)
    random: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CronDanmu":
        values = _matching_fields(cls, data)
        if "danmu" in values:
            values["danmu"] = [str(item) for item in values["danmu"]]
        return cls(**values)


@dataclass
class TimedWelcome:
    key: str = ""
    enabled: bool = False
    danmu: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TimedWelcome":
        values = _matching_fields(cls, data)
        if "danmu" in values:
            values["danmu"] = [str(item) for item in values["danmu"]]
        return cls(**values)


@dataclass
class ChatGPTConfig:
    api_url: str = ""
    api_token: str = ""
    prompt: str = ""
    model: str = ""
    limit: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChatGPTConfig":
        return cls(**_matching_fields(cls, data))


@dataclass
class Config:
    room_id: int = 0
    danmu_len: int = 20
    db_path: str = "./db"
    db_name: str = "danmu.db"
    entry_msg: str = "off"
    goodbye_info: str = ""
    send_enabled: bool = True
    cron_danmu: bool = False
    cron_danmu_list: list[CronDanmu] = field(default_factory=list)
    interact_word: bool = False
    entry_effect: bool = False
    welcome_high_wealthy: bool = False
    welcome_high_wealthy_level: int = 0
    interact_self: bool = False
    interact_anchor: bool = False
    interact_word_by_time: bool = False
    welcome_switch: bool = False
    welcome_string: dict[str, str] = field(default_factory=dict)
    welcome_use_at: bool = False
    welcome_danmu: list[str] = field(default_factory=list)
    welcome_danmu_by_time: list[TimedWelcome] = field(default_factory=list)
    welcome_blacklist: list[str] = field(default_factory=list)
    welcome_blacklist_wide: list[str] = field(default_factory=list)
    lottery_enable: bool = False
    show_block_msg: bool = False
    thanks_gift: bool = False
    thanks_gift_use_at: bool = False
    thanks_gift_timeout: int = 3
    thanks_min_cost: int = 0
    blind_box_profit_loss_stat: bool = False
    blind_box_stat: bool = False
    thanks_focus: bool = False
    thanks_share: bool = False
    focus_danmu: list[str] = field(default_factory=list)
    pk_notice: bool = False
    robot_mode: str = ""
    robot_name: str = ""
    talk_robot_cmd: str = ""
    fuzzy_match_cmd: bool = False
    chatgpt: ChatGPTConfig = field(default_factory=ChatGPTConfig)
    danmu_cnt_enable: bool = False
    keyword_reply: bool = False
    keyword_reply_list: dict[str, str] = field(default_factory=dict)
    sign_in_enable: bool = False
    draw_by_lot: bool = False
    draw_lots_list: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Config":
        """Build a config from parsed YAML; keys may be CamelCase or snake_case."""
        values = _matching_fields(cls, data)
        if "cron_danmu_list" in values:
            values["cron_danmu_list"] = [CronDanmu.from_mapping(item) for item in values["cron_danmu_list"]]
        if "welcome_danmu_by_time" in values:
            values["welcome_danmu_by_time"] = [
                TimedWelcome.from_mapping(item) for item in values["welcome_danmu_by_time"]
            ]
        if "chatgpt" in values:
            values["chatgpt"] = ChatGPTConfig.from_mapping(values["chatgpt"])
        for name in ("welcome_string", "keyword_reply_list"):
            if name in values:
                values[name] = {str(k): str(v) for k, v in values[name].items()}
        return cls(**values)


@dataclass
class WelcomeDefaults:
    """Welcome switches as configured, restored after lotteries and red pockets."""

    entry_effect: bool = False
    welcome_high_wealthy: bool = False
    interact_word: bool = False


@dataclass
class ServiceContext:
    config: Config
    other_side_uid: set[int] = field(default_factory=set)
    sign_in_model: SignInModel | None = None
    danmu_count_model: DanmuCountModel | None = None
    blind_box_stat_model: BlindBoxStatModel | None = None
    user_id: int = 0
    autointeract: WelcomeDefaults = field(default_factory=WelcomeDefaults)
    robot_id: str = ""


def create_service_context(config: Config) -> ServiceContext:
    """Open the room database and build a context holding a copy of ``config``."""
    config = copy.deepcopy(config)
    db_file = Path(config.db_path) / config.db_name
    conn = sqlite3.connect(str(db_file), timeout=5.0, check_same_thread=False)
    return ServiceContext(
        config=config,
        sign_in_model=SignInModel(conn, config.room_id),
        danmu_count_model=DanmuCountModel(conn, config.room_id),
        blind_box_stat_model=BlindBoxStatModel(conn, config.room_id),
        user_id=0,
        autointeract=WelcomeDefaults(
            entry_effect=config.entry_effect,
            welcome_high_wealthy=config.welcome_high_wealthy,
            interact_word=config.interact_word,
        ),
    )


def create_test_service_context(config: Config) -> ServiceContext:
    """A context without any database models."""
    return ServiceContext(config=copy.deepcopy(config))