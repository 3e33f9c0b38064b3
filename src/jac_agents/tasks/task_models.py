# src/jac_agents/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Agent task lifecycle status.

    pending   -> created, not yet handed to a worker
    queued    -> waiting for the scheduler to claim it
    running   -> claimed by a worker (or a dispatcher parent in flight)
    completed / failed / cancelled -> terminal
    """

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


# Counted by the concurrency guard and swept when stale.
ACTIVE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.RUNNING, TaskStatus.QUEUED)
# What the kill switch may cancel.
CANCELLABLE_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.RUNNING, TaskStatus.QUEUED, TaskStatus.PENDING)
TERMINAL_STATUSES: tuple[TaskStatus, ...] = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskType(StrEnum):
    SEARCH = "search"
    SAVE = "save"
    ENRICH = "enrich"
    REPORT = "report"
    GENERAL = "general"
    RESEARCH = "research"
    MONITOR = "monitor"
    CODE = "code"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskType:
        if not raw:
            return cls.GENERAL
        try:
            return cls(raw)
        except ValueError:
            return cls.GENERAL


@dataclass(slots=True)
class AgentTask:
    id: str
    user_id: str
    type: TaskType
    status: TaskStatus
    intent: str
    created_at: float
    updated_at: float

    agent: str | None = None
    parent_task_id: str | None = None
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: str | None = None

    cost_usd: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0

    completed_at: float | None = None
    cancelled_at: float | None = None

    @property
    def label(self) -> str:
        """Intent if present, else the task type."""
        return (self.intent or "").strip() or self.type.value


class LogStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def from_db(cls, raw: str | None) -> LogStatus:
        try:
            return cls(raw or "")
        except ValueError:
            return cls.COMPLETED


@dataclass(slots=True)
class ActivityLogEntry:
    id: str
    task_id: str
    user_id: str
    agent: str
    step: str
    status: LogStatus
    detail: dict[str, Any]
    duration_ms: int | None
    created_at: float


@dataclass(slots=True)
class ConversationMessage:
    id: str
    user_id: str
    role: str  # "user" | "assistant"
    content: str
    task_ids: list[str]
    created_at: float


@dataclass(slots=True)
class Reflection:
    id: str
    user_id: str
    task_type: str
    intent: str | None
    summary: str
    connections: list[str] | None
    created_at: float
