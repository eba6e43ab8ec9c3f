import json
from urllib.parse import unquote_plus

import pytest
import requests
import responses

from danmurobot.api import ApiError
from danmurobot.chatbots import (
    clean_chatgpt_reply,
    encode_special_char,
    request_chatgpt,
    request_qingyunke,
)
from danmurobot.service import ChatGPTConfig, Config

QINGYUNKE = "http://api.qingyunke.com/api.php"
LLM_BASE = "https://llm.example.com/v1"


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def test_encode_keeps_letters_digits_and_wide_text():
    assert encode_special_char("abcXYZ019") == "abcXYZ019"
    assert encode_special_char("你好") == "你好"


def test_encode_escapes_ascii_twice():
    assert encode_special_char(" ") == "%2B"
    assert encode_special_char("?") == "%253F"


@pytest.mark.parametrize("text", ["hello world", "a&b=c?d", "100% sure!", "x/y#z"])
def test_encode_round_trip(text):
    assert unquote_plus(unquote_plus(encode_special_char(text))) == text


def test_clean_reply_strips_one_prefix():
    assert clean_chatgpt_reply("？你好") == "你好"
    assert clean_chatgpt_reply("？？x") == "？x"
    assert clean_chatgpt_reply("a\n\nb\nc") == "ab\nc"


def test_qingyunke_reply(mocked):
    mocked.add(responses.GET, QINGYUNKE, json={"result": 0, "content": "hi there"})
    reply = request_qingyunke(requests.Session(), "hello world")
    assert reply == "hi there"
    url = mocked.calls[0].request.url
    assert "msg=" + encode_special_char("hello world") in url
    assert "key=free" in url


def test_qingyunke_bad_body(mocked):
    mocked.add(responses.GET, QINGYUNKE, body="oops")
    with pytest.raises(ApiError):
        request_qingyunke(requests.Session(), "hello")


def _config(limit=True):
    return Config(
        danmu_len=20,
        chatgpt=ChatGPTConfig(
            api_url=LLM_BASE, api_token="token", prompt="be nice", model="m", limit=limit
        ),
    )


def test_chatgpt_request_and_reply(mocked):
    mocked.add(
        responses.POST,
        LLM_BASE + "/chat/completions",
        json={
            "choices": [
                {"message": {"role": "assistant", "content": "？first\n\npart"}},
                {"message": {"role": "assistant", "content": "second"}},
            ],
            "usage": {"total_tokens": 12},
        },
    )
    reply = request_chatgpt(requests.Session(), "question", _config())
    assert reply == "firstpartsecond"
    request = mocked.calls[0].request
    assert request.headers["Authorization"] == "Bearer token"
    payload = json.loads(request.body)
    assert payload["model"] == "m"
    assert payload["messages"][0] == {"role": "assistant", "content": "be nice 尽可能的在20个字内回答"}
    assert payload["messages"][1] == {"role": "user", "content": "question"}


def test_chatgpt_without_limit_keeps_prompt(mocked):
    mocked.add(responses.POST, LLM_BASE + "/chat/completions", json={"choices": []})
    assert request_chatgpt(requests.Session(), "q", _config(limit=False)) == ""
    payload = json.loads(mocked.calls[0].request.body)
    assert payload["messages"][0]["content"] == "be nice"


def test_chatgpt_http_error(mocked):
    mocked.add(responses.POST, LLM_BASE + "/chat/completions", status=500, body="down")
    with pytest.raises(ApiError):
        request_chatgpt(requests.Session(), "q", _config())


def test_chatgpt_requires_endpoint():
    with pytest.raises(ApiError):
        request_chatgpt(requests.Session(), "q", Config())