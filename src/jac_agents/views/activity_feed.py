# src/jac_agents/views/activity_feed.py

from __future__ import annotations

"""
Activity firehose.

Merges agent tasks, activity-log steps and reflections into one feed,
newest first, with type/agent/status filters and offset paging per source.
A live subscription on agent_tasks keeps task items current.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..agents.registry import agent_to_filter_key
from ..core.realtime import ChangeEvent, ChangeFeed, ChangeType, Subscription
from ..tasks.activity_log import ActivityLogStore
from ..tasks.task_models import ActivityLogEntry, AgentTask, Reflection
from ..tasks.task_store import TASKS_TABLE, AgentTaskStore

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

ITEM_TYPES = ("all", "task", "activity", "reflection")
AGENT_TYPES = ("all", "research", "save", "search", "code", "general")
STATUS_FILTERS = ("all", "completed", "running", "failed", "cancelled")


@dataclass(slots=True, frozen=True)
class ActivityFilters:
    type: str = "all"
    agent_type: str = "all"
    status: str = "all"

    def __post_init__(self) -> None:
        if self.type not in ITEM_TYPES:
            raise ValueError(f"type must be one of {', '.join(ITEM_TYPES)}")
        if self.agent_type not in AGENT_TYPES:
            raise ValueError(f"agent_type must be one of {', '.join(AGENT_TYPES)}")
        if self.status not in STATUS_FILTERS:
            raise ValueError(f"status must be one of {', '.join(STATUS_FILTERS)}")

    def wants(self, kind: str) -> bool:
        return self.type in ("all", kind)

    def agent_ok(self, agent: str | None) -> bool:
        return self.agent_type == "all" or agent_to_filter_key(agent) == self.agent_type

    def task_ok(self, task: AgentTask) -> bool:
        if not self.wants("task"):
            return False
        if self.status != "all" and task.status.value != self.status:
            return False
        return self.agent_ok(task.agent)


@dataclass(slots=True, frozen=True)
class ActivityItem:
    kind: str  # "task" | "activity" | "reflection"
    id: str
    created_at: float
    data: AgentTask | ActivityLogEntry | Reflection


class ActivityFeed:
    def __init__(
        self,
        user_id: str,
        tasks: AgentTaskStore,
        activity: ActivityLogStore,
        *,
        feed: ChangeFeed | None = None,
        page_size: int = PAGE_SIZE,
        on_change: Callable[[list[ActivityItem]], None] | None = None,
    ) -> None:
        self.user_id = user_id
        self.tasks = tasks
        self.activity = activity
        self.feed = feed
        self.page_size = max(1, int(page_size))
        self.on_change = on_change

        self.filters = ActivityFilters()
        self.has_more = True
        self.is_loading = False

        self._lock = threading.Lock()
        self._items: list[ActivityItem] = []
        self._offsets = {"tasks": 0, "activities": 0, "reflections": 0}
        self._sub: Subscription | None = None

    @property
    def items(self) -> list[ActivityItem]:
        with self._lock:
            return list(self._items)

    # ---- paging ----

    def _fetch_page(self) -> list[ActivityItem]:
        f = self.filters
        n = self.page_size
        results: list[ActivityItem] = []

        if f.wants("task"):
            rows = self.tasks.list_tasks_for_user(
                self.user_id,
                limit=n,
                offset=self._offsets["tasks"],
                status=None if f.status == "all" else f.status,
            )
            self._offsets["tasks"] += len(rows)
            results.extend(ActivityItem("task", t.id, t.created_at, t) for t in rows if f.agent_ok(t.agent))

        if f.wants("activity"):
            rows = self.activity.list_for_user(self.user_id, limit=n, offset=self._offsets["activities"])
            self._offsets["activities"] += len(rows)
            results.extend(ActivityItem("activity", a.id, a.created_at, a) for a in rows if f.agent_ok(a.agent))

        # Reflections have no status.
        if f.wants("reflection") and f.status == "all":
            rows = self.tasks.list_reflections(self.user_id, limit=n, offset=self._offsets["reflections"])
            self._offsets["reflections"] += len(rows)
            results.extend(
                ActivityItem("reflection", r.id, r.created_at, r)
                for r in rows
                if f.agent_ok(r.task_type) or r.task_type == f.agent_type
            )

        results.sort(key=lambda it: it.created_at, reverse=True)
        return results

    def refresh(self) -> list[ActivityItem]:
        """Reset offsets and load the first page."""
        if not self.user_id:
            return []
        self.is_loading = True
        try:
            self._offsets = {"tasks": 0, "activities": 0, "reflections": 0}
            page = self._fetch_page()
            with self._lock:
                self._items = page
            self.has_more = len(page) >= self.page_size
        finally:
            self.is_loading = False
        self._notify()
        return self.items

    def load_more(self) -> list[ActivityItem]:
        if not self.user_id or not self.has_more or self.is_loading:
            return self.items
        self.is_loading = True
        try:
            page = self._fetch_page()
            with self._lock:
                self._items.extend(page)
            if len(page) < self.page_size:
                self.has_more = False
        finally:
            self.is_loading = False
        self._notify()
        return self.items

    def set_filters(self, filters: ActivityFilters | None = None, **changes: Any) -> list[ActivityItem]:
        if filters is None:
            current = self.filters
            filters = ActivityFilters(
                type=changes.get("type", current.type),
                agent_type=changes.get("agent_type", current.agent_type),
                status=changes.get("status", current.status),
            )
        self.filters = filters
        return self.refresh()

    # ---- live ----

    def start(self) -> list[ActivityItem]:
        items = self.refresh()
        if self.feed is not None and self._sub is None and self.user_id:
            self._sub = self.feed.subscribe(TASKS_TABLE, self._on_task_change, user_id=self.user_id)
        return items

    def stop(self) -> None:
        if self._sub is not None:
            self._sub.unsubscribe()
            self._sub = None

    def _on_task_change(self, ev: ChangeEvent) -> None:
        task = ev.new
        if not isinstance(task, AgentTask):
            return

        if ev.event_type == ChangeType.INSERT:
            if not self.filters.task_ok(task):
                return
            with self._lock:
                self._items.insert(0, ActivityItem("task", task.id, task.created_at, task))
        elif ev.event_type == ChangeType.UPDATE:
            with self._lock:
                for i, it in enumerate(self._items):
                    if it.kind == "task" and it.id == task.id:
                        self._items[i] = ActivityItem("task", task.id, task.created_at, task)
                        break
                else:
                    return
        else:
            return
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.items)
