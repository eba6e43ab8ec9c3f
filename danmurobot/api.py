"""HTTP client for the live room endpoints, danmu sending and the saved login cookies."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

import requests

from .service import ReplyInfo

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

SEND_URL = "https://api.live.bilibili.com/msg/send"
DANMU_INFO_URL = "https://api.live.bilibili.com/xlive/web-room/v1/index/getDanmuInfo?id={room_id}&type=0"
ROOM_INIT_URL = "https://api.live.bilibili.com/room/v1/Room/room_init?id={room_id}"
MASTER_INFO_URL = "https://api.live.bilibili.com/live_user/v1/Master/info?uid={uid}"
TOP_LIST_URL = (
    "https://api.live.bilibili.com/xlive/app-room/v2/guardTab/topList"
    "?page_size=29&roomid={room_id}&page={page}&ruid={user_id}"
)
RANK_LIST_URL = (
    "https://api.live.bilibili.com/xlive/general-interface/v1/rank/getOnlineGoldRank"
    "?ruid={user_id}&roomId={room_id}&page={page}&pageSize=50"
)
LOGIN_URL = "https://passport.bilibili.com/x/passport-login/web/qrcode/generate"
LOGIN_POLL_URL = "https://passport.bilibili.com/x/passport-login/web/qrcode/poll?qrcode_key={key}"

SENSITIVE_REJECTED = "弹幕内容包含敏感词，被服务器拒绝"

log = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """A request failed or the server answered with an error."""


class ApiClient:
    """Talks to the site on behalf of the logged-in robot account."""

    def __init__(self, session: requests.Session | None = None, token_dir: str | Path = "token") -> None:
        self.session = session if session is not None else requests.Session()
        self.token_dir = Path(token_dir)
        self.cookie_str = ""
        self.cookies: dict[str, str] = {}
        self.retry_attempts = 3
        self.retry_delay = 1.0
        self.timeout = 10.0

    @property
    def _token_txt(self) -> Path:
        return self.token_dir / "bili_token.txt"

    @property
    def _token_json(self) -> Path:
        return self.token_dir / "bili_token.json"

    # -- saved cookies -------------------------------------------------

    def has_saved_cookies(self) -> bool:
        """Whether both cookie files from an earlier login exist."""
        return self._token_txt.exists() and self._token_json.exists()

    def load_cookies(self) -> None:
        """Restore the cookie string and cookie table saved by an earlier login."""
        self.cookie_str = self._token_txt.read_text(encoding="utf-8")
        loaded = json.loads(self._token_json.read_text(encoding="utf-8"))
        self.cookies.update({str(k): str(v) for k, v in loaded.items()})

    def save_cookies(self) -> None:
        """Write the cookie string and cookie table to the token directory."""
        self.token_dir.mkdir(parents=True, exist_ok=True)
        self._token_txt.write_text(self.cookie_str, encoding="utf-8")
        self._token_json.write_text(json.dumps(self.cookies, ensure_ascii=False), encoding="utf-8")

    # -- plumbing ------------------------------------------------------

    def _get(self, url: str, headers: dict[str, str] | None = None) -> requests.Response:
        try:
            return self.session.get(
                url, headers={"user-agent": USER_AGENT, **(headers or {})}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ApiError(f"request to {url} failed: {exc}") from exc

    @staticmethod
    def _decode(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(f"cannot decode response: {response.text!r}") from exc
        if not isinstance(body, dict):
            raise ApiError(f"unexpected response: {response.text!r}")
        return body

    def _get_json(self, url: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
        return self._decode(self._get(url, headers))

    # -- danmu ---------------------------------------------------------

    def _send_once(self, form: dict[str, str]) -> None:
        try:
            response = self.session.post(
                SEND_URL,
                files={key: (None, value) for key, value in form.items()},
                headers={"Cookie": self.cookie_str, "user-agent": USER_AGENT},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            log.error("请求send失败：%s", exc)
            raise ApiError(str(exc)) from exc
        try:
            body = response.json()
        except ValueError as exc:
            # An unreadable answer is not worth another attempt.
            log.error("send弹幕响应解析失败:%s", exc)
            return
        message = str(body.get("msg", ""))
        if body.get("code", 0) != 0:
            log.info("请求send失败:%s", message)
            raise ApiError(message)
        if message == "f":
            log.info("请求send失败:%s , %s", message, SENSITIVE_REJECTED)
            raise ApiError(SENSITIVE_REJECTED)

    def send(self, msg: str, room_id: int, reply: ReplyInfo | None = None) -> None:
        """Post one danmu to the room, retrying; raises ApiError once every attempt failed."""
        csrf = self.cookies.get("bili_jct", "")
        form = {
            "bubble": "5",
            "msg": msg,
            "color": "4546550",
            "fontsize": "25",
            "rnd": str(int(time.time())),
        }
        if reply is not None:
            form["reply_mid"] = reply.reply_uid
            if reply.reply_msg_id:
                form["replay_dmid"] = reply.reply_msg_id
        form.update({"roomid": str(room_id), "csrf": csrf, "csrf_token": csrf})

        last_error: ApiError | None = None
        for attempt in range(self.retry_attempts):
            if attempt:
                time.sleep(self.retry_delay)
            try:
                self._send_once(form)
                return
            except ApiError as exc:
                last_error = exc
        log.error("%s", last_error)
        raise last_error if last_error is not None else ApiError("danmu not sent")

    def danmu_token(self, room_id: int, buvid3: str, buvid4: str) -> dict[str, Any]:
        """The danmu stream key and hosts for a room."""
        cookies = f"{self.cookie_str}buvid3={buvid3};buvid4={buvid4};"
        body = self._get_json(DANMU_INFO_URL.format(room_id=room_id), {"Cookie": cookies})
        if body.get("code") != 0:
            message = str(body.get("message", ""))
            log.error("%s", message)
            raise ApiError(message)
        return body

    # -- rooms ---------------------------------------------------------

    def room_init(self, room_id: int) -> dict[str, Any]:
        """The room's data; empty when the server answers with another error code."""
        body = self._get_json(ROOM_INIT_URL.format(room_id=room_id))
        code = body.get("code")
        if code == 60004:
            raise ApiError("房间号不存在")
        if code != 0:
            return {}
        return body.get("data") or {}

    def master_info(self, room_id: int) -> dict[str, Any]:
        """Profile data of the streamer who owns the room."""
        uid = self.room_init(room_id).get("uid", 0)
        body = self._get_json(MASTER_INFO_URL.format(uid=uid))
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取用户信息失败", room_id, uid)
            raise ApiError("获取用户信息失败")
        return body.get("data") or {}

    def top_list(self, room_id: int, user_id: int, page: int) -> dict[str, Any]:
        """One page of the room's guard list."""
        body = self._get_json(TOP_LIST_URL.format(room_id=room_id, user_id=user_id, page=page))
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取舰长列表失败", room_id, user_id)
            raise ApiError("获取舰长列表失败")
        return body.get("data") or {}

    def rank_list(self, room_id: int, user_id: int, page: int) -> dict[str, Any]:
        """One page of the room's online contribution ranking."""
        body = self._get_json(RANK_LIST_URL.format(room_id=room_id, user_id=user_id, page=page))
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取高能列表失败", room_id, user_id)
            raise ApiError("获取高能列表失败")
        return body.get("data") or {}

    # -- login ---------------------------------------------------------

    def login_url(self) -> dict[str, Any]:
        """Start a QR-code login; the data holds the URL to encode and its key."""
        data = self._get_json(LOGIN_URL).get("data") or {}
        log.info("oauthKey: %s", data.get("qrcode_key", ""))
        return data

    @staticmethod
    def _set_cookie_headers(response: requests.Response) -> list[str]:
        raw_headers = getattr(response.raw, "headers", None)
        getlist = getattr(raw_headers, "getlist", None)
        if getlist is not None:
            return list(getlist("Set-Cookie"))
        value = response.headers.get("Set-Cookie")
        return [value] if value else []

    def poll_login(self, oauth_key: str, interval: float = 5.0) -> dict[str, Any]:
        """Wait until the QR code is confirmed, then keep and save the new cookies."""
        url = LOGIN_POLL_URL.format(key=oauth_key)
        log.info("等待扫码登录...")
        while True:
            response = self._get(url)
            body = self._decode(response)
            if body.get("code") != 0:
                raise ApiError(str(body.get("message", "")))
            data = body.get("data") or {}
            state = data.get("code")
            if state == 0:
                log.info("登录成功！")
                break
            if state == 86038:
                message = str(data.get("message", ""))
                log.error("%s", message)
                raise ApiError(message)
            time.sleep(interval)

        for header in self._set_cookie_headers(response):
            first = header.split(";")[0]
            parts = first.split("=")
            if len(parts) < 2:
                continue
            if parts[0] not in self.cookies:
                self.cookies[parts[0]] = parts[1]
                self.cookie_str += first + ";"
        self.save_cookies()
        return data