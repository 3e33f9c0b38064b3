# tests/fakes.py

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from typing import Any

from jac_agents.core.ports import ChatMessage


def route_json(intent: str, agent_type: str, *, query: str = "", response: str = "On it.") -> str:
    """A router reply in the shape the dispatcher expects."""
    return json.dumps(
        {
            "intent": intent,
            "summary": f"{intent} request",
            "agentType": agent_type,
            "extractedQuery": query,
            "response": response,
        }
    )


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Yields a predefined text as a single chunk (or whatever `responder` returns)
    """

    def __init__(self, next_text: str = "ok", *, responder: Callable[[str, str], str] | None = None) -> None:
        self.next_text = next_text
        self.responder = responder
        self.calls: list[tuple[list[ChatMessage], str]] = []

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        self.calls.append((messages, system_prompt))
        if self.responder is not None:
            user_text = messages[-1]["content"] if messages else ""
            yield self.responder(system_prompt, user_text)
            return
        yield self.next_text


class FailingLLMClient:
    def __init__(self, message: str = "boom") -> None:
        self.message = message

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        raise RuntimeError(self.message)


class FakeWorker:
    """
    Worker with a scripted outcome.

    `result` is returned, or raised when it is an exception. `hook` runs
    first (e.g. to cancel the task mid-run), then an optional checkpoint.
    """

    def __init__(
        self,
        agent: str,
        result: Any = None,
        *,
        delay: float = 0.0,
        hook: Callable[[Any], None] | None = None,
        checkpoint: bool = False,
    ) -> None:
        self.agent = agent
        self.result = {"ok": True} if result is None else result
        self.delay = delay
        self.hook = hook
        self.checkpoint = checkpoint
        self.seen: list[str] = []

    async def run(self, ctx) -> dict[str, Any]:
        self.seen.append(ctx.task.id)
        if self.hook is not None:
            self.hook(ctx)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.checkpoint:
            ctx.checkpoint("after_hook")
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result
