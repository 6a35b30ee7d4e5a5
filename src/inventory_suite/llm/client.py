from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import httpx
import requests
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..config import LLMConfig
from ..logging import get_logger


LOG = get_logger("llm-client")


class LLMError(RuntimeError):
    """The LLM endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ChatClient(Protocol):
    def complete(self, prompt: str) -> str: ...

    def close(self) -> None: ...


def _first_choice_text(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    choices = body.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


class ChatCompletionsClient:
    """Thin wrapper around OpenAI-compatible `/chat/completions` endpoints (Groq, OpenRouter)."""

    def __init__(self, config: LLMConfig, *, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.endpoint = f"{config.base_url}/chat/completions"
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        })

    def chat(self, messages: List[Dict[str, Any]]) -> str:
        payload = {
            "model": self.config.model_name,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        LOG.info("Calling %s model=%s", self.config.backend, self.config.model_name)
        try:
            resp = self.s.post(self.endpoint, json=payload, timeout=self.config.timeout_seconds)
        except requests.RequestException as exc:
            LOG.error("%s request failed: %s", self.config.backend, exc)
            raise LLMError(f"{self.config.backend} request failed", detail=str(exc)) from exc

        if resp.status_code >= 400:
            LOG.error("%s HTTP %s: %s", self.config.backend, resp.status_code, resp.text[:500])
            raise LLMError(
                f"{self.config.backend} call failed",
                status_code=resp.status_code,
                detail=resp.text,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise LLMError(f"{self.config.backend} returned non-JSON body", detail=resp.text[:500]) from exc
        LOG.debug("%s response (truncated): %s", self.config.backend, str(body)[:500])
        return _first_choice_text(body)

    def complete(self, prompt: str) -> str:
        return self.chat([{"role": "user", "content": prompt}])

    def close(self) -> None:
        self.s.close()


class OpenAIChatClient:
    """Chat completions through the official SDK, with explicit httpx timeouts."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self.http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(config.timeout_seconds), write=30.0, pool=10.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        self.client = OpenAI(api_key=config.api_key, base_url=config.base_url, http_client=self.http_client)

    def complete(self, prompt: str) -> str:
        LOG.info("Calling OpenAI Chat Completions model=%s", self.config.model_name)
        try:
            resp = self.client.chat.completions.create(
                model=self.config.model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except (APIConnectionError, APITimeoutError) as e:
            LOG.error("Network/timeout while calling OpenAI: %s", e)
            raise LLMError("OpenAI request failed", detail=str(e)) from e
        except APIStatusError as e:
            body = getattr(getattr(e, "response", None), "text", "") or ""
            LOG.error("OpenAI API returned %s. Body preview: %r", e.status_code, body[:300])
            raise LLMError("OpenAI call failed", status_code=e.status_code, detail=body) from e
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    def close(self) -> None:
        self.client.close()
        self.http_client.close()


def build_chat_client(config: LLMConfig) -> ChatClient:
    if config.backend == "openai":
        return OpenAIChatClient(config)
    return ChatCompletionsClient(config)
