# src/jac_agents/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The dispatcher, scheduler and views depend on Protocols instead of concrete
implementations, so stores/LLM providers/workers stay swappable in tests.
"""

from typing import Any, Awaitable, Iterable, Protocol

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


class LLMClient(Protocol):
    """Streaming chat completion client (OpenAI/OpenRouter-compatible)."""
    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]: ...


class TaskRepo(Protocol):
    # Scheduler API
    def list_runnable_tasks(self, *, limit: int = 8) -> list[Any]: ...
    def try_claim_task(self, task_id: str, *, expected: Iterable[Any] = ...) -> bool: ...
    def get_task(self, task_id: str) -> Any | None: ...
    def update_task(
            self,
            task_id: str,
            *,
            status: Any | None = None,
            output: dict[str, Any] | None = ...,
            error: str | None = ...,
            cost_usd: float | None = None,
            tokens_in: int | None = None,
            tokens_out: int | None = None,
            only_from: Iterable[Any] | None = None,
    ) -> bool: ...
    def count_open_children(self, parent_id: str) -> int: ...

    # Dispatcher / kill switch API
    def create_task(
            self,
            *,
            user_id: str,
            type: Any,
            intent: str,
            agent: str | None = None,
            status: Any = ...,
            parent_task_id: str | None = None,
            input: dict[str, Any] | None = None,
    ) -> Any: ...
    def count_tasks(
            self,
            user_id: str | None = None,
            *,
            statuses: Iterable[Any] | None = None,
            since: float | None = None,
    ) -> int: ...
    def fail_stale_tasks(self, user_id: str | None = None, *, older_than_seconds: float = 600.0) -> list[str]: ...
    def cancel_tasks(self, user_id: str, *, task_id: str | None = None, reason: str = ...) -> list[str]: ...
    def add_message(self, *, user_id: str, role: str, content: str, task_ids: list[str] | None = None) -> Any: ...


class AgentWorker(Protocol):
    """
    A worker agent. run() receives a WorkerContext and returns the task output.

    Raising fails the task; raising TaskCancelled leaves it cancelled.
    """

    agent: str

    def run(self, ctx: Any) -> Awaitable[dict[str, Any]]: ...
