from typing import Any, Dict, List

import pytest
import requests

from inventory_suite.config import LLMConfig
from inventory_suite.llm.client import (
    ChatCompletionsClient,
    LLMError,
    OpenAIChatClient,
    build_chat_client,
)


class _Response:
    def __init__(self, status_code: int, body: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _Session:
    def __init__(self, response: Any) -> None:
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self.response = response
        self.closed = False

    def post(self, url: str, json: Dict[str, Any], timeout: int) -> _Response:
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self) -> None:
        self.closed = True


def _config(backend: str = "groq") -> LLMConfig:
    return LLMConfig(backend=backend, api_key="secret", model_name="qwen/qwen3-32b", base_url="https://llm.example/v1")


def test_chat_completions_posts_prompt_and_returns_first_choice():
    session = _Session(_Response(200, {"choices": [{"message": {"content": "<sql>SELECT 1</sql>"}}]}))
    client = ChatCompletionsClient(_config(), session=session)

    assert client.complete("hello") == "<sql>SELECT 1</sql>"
    call = session.calls[0]
    assert call["url"] == "https://llm.example/v1/chat/completions"
    assert call["json"]["model"] == "qwen/qwen3-32b"
    assert call["json"]["messages"] == [{"role": "user", "content": "hello"}]
    assert call["json"]["temperature"] == 0.0
    assert session.headers["Authorization"] == "Bearer secret"


def test_chat_completions_empty_choices_give_empty_text():
    client = ChatCompletionsClient(_config(), session=_Session(_Response(200, {"choices": []})))
    assert client.complete("hello") == ""


def test_chat_completions_http_error_raises_llm_error():
    client = ChatCompletionsClient(_config(), session=_Session(_Response(429, text="rate limited")))
    with pytest.raises(LLMError) as excinfo:
        client.complete("hello")
    assert excinfo.value.status_code == 429
    assert excinfo.value.detail == "rate limited"


def test_chat_completions_transport_error_raises_llm_error():
    session = _Session(requests.ConnectionError("refused"))
    client = ChatCompletionsClient(_config("openrouter"), session=session)
    with pytest.raises(LLMError, match="openrouter request failed"):
        client.complete("hello")


def test_chat_completions_non_json_body():
    client = ChatCompletionsClient(_config(), session=_Session(_Response(200, None, text="<html>")))
    with pytest.raises(LLMError, match="non-JSON"):
        client.complete("hello")


def test_build_chat_client_picks_sdk_for_openai():
    assert isinstance(build_chat_client(_config("openai")), OpenAIChatClient)
    assert isinstance(build_chat_client(_config("groq")), ChatCompletionsClient)


def test_chat_completions_close_releases_session():
    session = _Session(_Response(200, {"choices": []}))
    ChatCompletionsClient(_config(), session=session).close()
    assert session.closed


def test_openai_client_close_closes_http_client():
    client = OpenAIChatClient(_config("openai"))
    client.close()
    assert client.http_client.is_closed
