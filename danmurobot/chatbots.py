"""Chat robots the danmu robot can ask for replies."""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote_plus

import requests

from .api import ApiError
from .service import Config

QINGYUNKE_URL = "http://api.qingyunke.com/api.php?key=free&appid=0&msg={msg}&_={stamp}"
_FULLWIDTH_QUESTION = "\uff1f"

log = logging.getLogger(__name__)


def encode_special_char(text: str) -> str:
    """Keep ASCII letters, digits and non-ASCII text; escape other ASCII twice."""
    out = []
    for char in text:
        if char.isascii() and char.isalnum():
            out.append(char)
        elif char.isascii():
            out.append(quote_plus(quote_plus(char, safe=""), safe=""))
        else:
            out.append(char)
    return "".join(out)


def request_qingyunke(session: requests.Session, msg: str) -> str:
    """Ask the free Qingyunke robot and return its reply text."""
    url = QINGYUNKE_URL.format(msg=encode_special_char(msg), stamp=time.time_ns() // 1000)
    try:
        response = session.get(url, headers={"Content-Type": "utf-8"}, timeout=10.0)
    except requests.RequestException as exc:
        log.error("请求qingyunke机器人接口失败：%s", exc)
        raise ApiError(str(exc)) from exc
    try:
        body = response.json()
    except ValueError as exc:
        raise ApiError(f"cannot decode robot reply: {response.text!r}") from exc
    if not isinstance(body, dict):
        raise ApiError(f"unexpected robot reply: {response.text!r}")
    return str(body.get("content", ""))


def clean_chatgpt_reply(text: str) -> str:
    """Drop one leading full-width question mark and every blank line break pair."""
    if text.startswith(_FULLWIDTH_QUESTION):
        text = text[len(_FULLWIDTH_QUESTION):]
    return text.replace("\n\n", "")


def request_chatgpt(session: requests.Session, msg: str, config: Config) -> str:
    """Ask an OpenAI-compatible chat completion endpoint and join its answers."""
    settings = config.chatgpt
    if not settings.api_url:
        raise ApiError("no chat completion endpoint configured")
    prompt = settings.prompt
    if settings.limit:
        prompt += f" 尽可能的在{config.danmu_len}个字内回答"
    payload: dict[str, Any] = {
        "model": settings.model,
        "messages": [
            {"role": "assistant", "content": prompt},
            {"role": "user", "content": msg},
        ],
    }
    try:
        response = session.post(
            settings.api_url + "/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {settings.api_token}"},
            timeout=60.0,
        )
    except requests.RequestException as exc:
        raise ApiError(str(exc)) from exc
    if response.status_code >= 400:
        raise ApiError(f"chat completion failed with status {response.status_code}: {response.text}")
    try:
        body = response.json()
    except ValueError as exc:
        raise ApiError(f"cannot decode chat completion: {response.text!r}") from exc
    log.info("本次开销：%s tokens", (body.get("usage") or {}).get("total_tokens", 0))
    return "".join(
        clean_chatgpt_reply(str((choice.get("message") or {}).get("content", "")))
        for choice in body.get("choices") or []
    )