# src/jac_agents/views/ticker.py

from __future__ import annotations

"""
Ticker: the small always-visible status strip.

Running agents (live via the change feed), today's/overdue reminders
(refreshed by a cron job) and the latest code session.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from ..agents.registry import agent_label
from ..brain.entry_store import EntryStore
from ..core.realtime import ChangeEvent, ChangeFeed, Subscription
from ..tasks.task_models import TaskStatus
from ..tasks.task_store import TASKS_TABLE, AgentTaskStore
from ..workspace.workspace_store import WorkspaceStore

logger = logging.getLogger(__name__)


def utc_today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@dataclass(slots=True, frozen=True)
class RunningTasks:
    count: int = 0
    agents: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class Reminders:
    today_count: int = 0
    overdue_count: int = 0


@dataclass(slots=True, frozen=True)
class CodeSessionInfo:
    branch: str
    status: str
    pr_url: str | None


@dataclass(slots=True, frozen=True)
class TickerSnapshot:
    running_tasks: RunningTasks = field(default_factory=RunningTasks)
    reminders: Reminders = field(default_factory=Reminders)
    latest_code_session: CodeSessionInfo | None = None


class TickerService:
    """Each part is fetched independently; a failing part keeps its default."""

    def __init__(
        self,
        tasks: AgentTaskStore,
        entries: EntryStore,
        workspace: WorkspaceStore,
        *,
        today: Callable[[], str] = utc_today,
    ) -> None:
        self.tasks = tasks
        self.entries = entries
        self.workspace = workspace
        self._today = today

    def running_tasks(self, user_id: str) -> RunningTasks | None:
        try:
            running = self.tasks.list_tasks_for_user(user_id, status=TaskStatus.RUNNING, limit=1000)
        except Exception:
            logger.warning("Ticker: running tasks fetch failed (non-blocking)", exc_info=True)
            return None
        labels = [agent_label(t.agent) for t in running]
        return RunningTasks(count=len(running), agents=tuple(dict.fromkeys(x for x in labels if x)))

    def reminders(self, user_id: str) -> Reminders | None:
        try:
            today = self._today()
            dated = self.entries.list_dated_entries(user_id, until=today)
        except Exception:
            logger.warning("Ticker: reminders fetch failed (non-blocking)", exc_info=True)
            return None
        today_count = sum(1 for e in dated if e.event_date == today)
        overdue = sum(1 for e in dated if e.event_date is not None and e.event_date < today)
        return Reminders(today_count=today_count, overdue_count=overdue)

    def latest_code_session(self, user_id: str) -> CodeSessionInfo | None:
        try:
            s = self.workspace.latest_session(user_id)
        except Exception:
            logger.warning("Ticker: code session fetch failed (non-blocking)", exc_info=True)
            return None
        if s is None:
            return None
        return CodeSessionInfo(branch=s.branch_name, status=s.status.value, pr_url=s.pr_url)

    def snapshot(self, user_id: str) -> TickerSnapshot:
        return TickerSnapshot(
            running_tasks=self.running_tasks(user_id) or RunningTasks(),
            reminders=self.reminders(user_id) or Reminders(),
            latest_code_session=self.latest_code_session(user_id),
        )


class TickerFeed:
    """Keeps a TickerSnapshot current for one user."""

    def __init__(
        self,
        service: TickerService,
        feed: ChangeFeed,
        user_id: str,
        *,
        on_change: Callable[[TickerSnapshot], None] | None = None,
    ) -> None:
        self.service = service
        self.feed = feed
        self.user_id = user_id
        self.on_change = on_change
        self._lock = threading.Lock()
        self._snapshot = TickerSnapshot()
        self._sub: Subscription | None = None
        self.loading = True

    @property
    def snapshot(self) -> TickerSnapshot:
        with self._lock:
            return self._snapshot

    def _set(self, **parts) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, **parts)
            snap = self._snapshot
        if self.on_change is not None:
            self.on_change(snap)

    def start(self) -> TickerSnapshot:
        if not self.user_id:
            return self.snapshot
        with self._lock:
            self._snapshot = self.service.snapshot(self.user_id)
        self.loading = False
        if self._sub is None:
            self._sub = self.feed.subscribe(TASKS_TABLE, self._on_task_change, user_id=self.user_id)
        return self.snapshot

    def stop(self) -> None:
        if self._sub is not None:
            self._sub.unsubscribe()
            self._sub = None

    def _on_task_change(self, _ev: ChangeEvent) -> None:
        self.refresh_running()

    def refresh_running(self) -> None:
        running = self.service.running_tasks(self.user_id)
        if running is not None:
            self._set(running_tasks=running)

    def refresh_reminders(self) -> None:
        reminders = self.service.reminders(self.user_id)
        if reminders is not None:
            self._set(reminders=reminders)

    def refresh_code_session(self) -> None:
        self._set(latest_code_session=self.service.latest_code_session(self.user_id))
