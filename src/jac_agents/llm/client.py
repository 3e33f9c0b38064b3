# src/jac_agents/llm/client.py

from __future__ import annotations

import json
import logging
import os
import re
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..core.ports import ChatMessage, LLMClient

logger = logging.getLogger(__name__)

MODEL_QUARANTINE_SECONDS = 3600.0

# model -> monotonic time when it may be tried again
_BAD_MODELS: dict[str, float] = {}

_NOT_CONFIGURED = {
    "LLM API key is not set": "missing API key. Set JAC_OPENROUTER_API_KEY",
    "LLM model list is empty": "no models. Set JAC_LLM_MODELS",
    "LLM base URL is not set": "missing base URL. Set JAC_OPENROUTER_BASE_URL",
}


@dataclass(frozen=True)
class LLMTimeouts:
    connect: float = 5.0
    read: float = 60.0
    # No content token within this window -> next model.
    first_token: float = 30.0

    @classmethod
    def from_env(cls) -> LLMTimeouts:
        def read_env(suffix: str, default: float) -> float:
            raw = (os.getenv(f"JAC_LLM_{suffix}_TIMEOUT_SECONDS") or "").strip()
            try:
                return float(raw) if raw else default
            except ValueError:
                return default

        first = read_env("FIRST_TOKEN", cls.first_token)
        return cls(
            connect=read_env("CONNECT", cls.connect),
            read=max(read_env("READ", cls.read), first),
            first_token=first,
        )

    def to_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(connect=self.connect, read=self.read, write=10.0, pool=self.connect)


def _failure_kind(exc: BaseException) -> str:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return "auth"
    if isinstance(exc, openai.NotFoundError):
        return "not_found"
    if isinstance(exc, openai.RateLimitError):
        return "rate_limit"
    if isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError, httpx.TimeoutException, TimeoutError)):
        return "network"
    return "other"


_FINAL_MESSAGES = {
    "rate_limit": "LLM is rate-limited. Try again later.",
    "network": "LLM network/timeout error. Try again later or change models.",
}


def friendly_llm_error_message(err: Exception) -> str:
    """Console-friendly text for an LLM RuntimeError."""
    msg = str(err).strip() or "LLM error."
    for marker, hint in _NOT_CONFIGURED.items():
        if marker in msg:
            return f"LLM is not configured ({hint} in .env, see config.example.py)."
    return msg


class OpenRouterLLMClient(LLMClient):
    """
    Streaming chat against an OpenAI-compatible endpoint (OpenRouter by default).

    Models from JAC_LLM_MODELS are tried in order. A model moves on to the next
    one on a 404 (and is quarantined for an hour), a rate limit, a network error
    or a missed first-token deadline. Auth failures stop immediately.

    Construction fails without an API key or base URL; bootstrap then uses the
    offline client.
    """

    def __init__(self, settings: Any) -> None:
        api_key = str(getattr(settings, "openrouter_api_key", None) or "").strip()
        base_url = str(getattr(settings, "openrouter_base_url", None) or "").strip()
        if not api_key:
            raise RuntimeError("LLM API key is not set. Set JAC_OPENROUTER_API_KEY in your .env.")
        if not base_url:
            raise RuntimeError("LLM base URL is not set. Set JAC_OPENROUTER_BASE_URL in your .env.")

        self.models: list[str] = [m.strip() for m in getattr(settings, "llm_models", None) or [] if m.strip()]
        self.headers: dict[str, str] = dict(getattr(settings, "extra_headers", None) or {})
        self.timeouts = LLMTimeouts.from_env()
        # Falling through the model list beats SDK retries on one model.
        self._client = OpenAI(base_url=base_url, api_key=api_key, timeout=self.timeouts.to_httpx(), max_retries=0)

    def _available_models(self) -> list[str]:
        now = time.monotonic()
        return [m for m in self.models if _BAD_MODELS.get(m, 0.0) <= now]

    def _stream_one(self, model: str, messages: list[ChatMessage], system_prompt: str) -> Iterator[str]:
        """Yield content from one model; raises TimeoutError when the first token is late."""
        started = time.monotonic()
        deadline = started + self.timeouts.first_token
        stream = self._client.chat.completions.create(
            model=model,
            stream=True,
            extra_headers=self.headers or None,
            messages=[{"role": "system", "content": system_prompt}, *messages],  # type: ignore[list-item]
        )
        got_content = False
        try:
            for chunk in stream:
                if not got_content and time.monotonic() > deadline:
                    raise TimeoutError(f"First token timeout on model: {model}")
                delta = chunk.choices[0].delta if chunk.choices else None
                piece = getattr(delta, "content", None)
                if not piece:
                    continue
                if not got_content:
                    got_content = True
                    logger.info("LLM: model=%s first token after %.2fs", model, time.monotonic() - started)
                yield piece
        finally:
            try:
                stream.close()
            except Exception:
                logger.debug("LLM: closing stream failed", exc_info=True)

        if not got_content:
            raise RuntimeError(f"Model returned no content: {model}")

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        if not self.models:
            raise RuntimeError("LLM model list is empty. Set JAC_LLM_MODELS in your .env.")

        last_error: Exception | None = None
        for model in self._available_models():
            yielded = False
            try:
                for piece in self._stream_one(model, messages, system_prompt):
                    yielded = True
                    yield piece
                return
            except Exception as e:
                if yielded:
                    # Part of the answer is already out; switching models would garble it.
                    raise
                kind = _failure_kind(e)
                if kind == "auth":
                    raise RuntimeError("LLM authentication failed. Check your API key (JAC_OPENROUTER_API_KEY).") from e
                if kind == "not_found":
                    _BAD_MODELS[model] = time.monotonic() + MODEL_QUARANTINE_SECONDS
                logger.info("LLM: model=%s failed (%s: %s), trying next", model, kind, e.__class__.__name__)
                last_error = e

        if last_error is None:
            raise RuntimeError("All LLM models failed.")
        message = _FINAL_MESSAGES.get(_failure_kind(last_error), "All LLM models failed.")
        raise RuntimeError(message) from last_error


def collect_text(llm: LLMClient, messages: list[ChatMessage], system_prompt: str) -> str:
    """Drain a streaming reply into one string."""
    return "".join(piece for piece in llm.stream_chat(messages, system_prompt) if piece).strip()


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_object(text: str) -> dict[str, Any] | None:
    """
    Best-effort: the first {...} block in a model reply as a dict.

    Models wrap JSON in prose or ``` fences; anything unparsable is None.
    """
    m = _JSON_OBJECT.search(text or "")
    if not m:
        return None
    try:
        val = json.loads(m.group(0))
    except ValueError:
        return None
    return val if isinstance(val, dict) else None
