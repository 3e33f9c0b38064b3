# src/jac_agents/tasks/activity_log.py

from __future__ import annotations

"""
Step-level agent activity log.

Every agent writes what it is doing (task_started, brain_search, plan, ...)
to agent_activity_log. Views read it back per task or as a user-wide stream.

AgentLogger never raises: a broken log must not break the agent.
"""

import logging
import sqlite3
import time
import uuid
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType
from typing import Any

from ..core.db import SQLiteStore
from ..core.realtime import ChangeFeed, ChangeType
from .task_models import ActivityLogEntry, LogStatus

logger = logging.getLogger(__name__)

ACTIVITY_TABLE = "agent_activity_log"


class ActivityLogStore(SQLiteStore):
    def __init__(self, db_path: str | Path = "jac.sqlite3", *, feed: ChangeFeed | None = None) -> None:
        super().__init__(db_path, feed=feed)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {ACTIVITY_TABLE} (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    agent TEXT NOT NULL,
                    step TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'completed',
                    detail TEXT NOT NULL DEFAULT '{{}}',
                    created_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(cur, ACTIVITY_TABLE, {"duration_ms": "INTEGER"})
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_activity_task ON {ACTIVITY_TABLE}(task_id, created_at)")
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_activity_user_agent ON {ACTIVITY_TABLE}(user_id, agent, created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    def _row_to_entry(self, row: sqlite3.Row) -> ActivityLogEntry:
        return ActivityLogEntry(
            id=str(row["id"]),
            task_id=str(row["task_id"]),
            user_id=str(row["user_id"]),
            agent=str(row["agent"]),
            step=str(row["step"]),
            status=LogStatus.from_db(row["status"]),
            detail=self._json_dict(row["detail"]),
            duration_ms=int(row["duration_ms"]) if row["duration_ms"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
        )

    def add_entry(
        self,
        *,
        task_id: str,
        user_id: str,
        agent: str,
        step: str,
        status: LogStatus = LogStatus.COMPLETED,
        detail: dict[str, Any] | None = None,
        duration_ms: int | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=str(uuid.uuid4()),
            task_id=task_id,
            user_id=user_id,
            agent=agent,
            step=step,
            status=status,
            detail=dict(detail or {}),
            duration_ms=duration_ms,
            created_at=time.time(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {ACTIVITY_TABLE}(id, task_id, user_id, agent, step, status, detail, duration_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.task_id,
                    entry.user_id,
                    entry.agent,
                    entry.step,
                    entry.status.value,
                    self._to_json(entry.detail),
                    entry.duration_ms,
                    entry.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        self._publish(ACTIVITY_TABLE, ChangeType.INSERT, user_id=user_id, new=entry)
        return entry

    def list_for_task(self, task_id: str) -> list[ActivityLogEntry]:
        """Oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"SELECT * FROM {ACTIVITY_TABLE} WHERE task_id = ? ORDER BY created_at ASC, rowid ASC",
                (task_id,),
            )
            return [self._row_to_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_for_tasks(self, task_ids: Iterable[str]) -> dict[str, list[ActivityLogEntry]]:
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return {}
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {ACTIVITY_TABLE}
                WHERE task_id IN ({",".join("?" for _ in ids)})
                ORDER BY created_at ASC, rowid ASC
                """,
                ids,
            )
            grouped: dict[str, list[ActivityLogEntry]] = defaultdict(list)
            for r in cur.fetchall():
                e = self._row_to_entry(r)
                grouped[e.task_id].append(e)
            return dict(grouped)
        finally:
            conn.close()

    def list_for_user(
        self,
        user_id: str,
        *,
        agent: str | None = None,
        agent_like: str | None = None,
        limit: int = 50,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[ActivityLogEntry]:
        where = ["user_id = ?"]
        params: list[Any] = [user_id]
        if agent is not None:
            where.append("agent = ?")
            params.append(agent)
        if agent_like:
            where.append("agent LIKE ?")
            params.append(f"%{agent_like}%")
        order = "DESC" if newest_first else "ASC"
        params.extend([int(limit), int(offset)])

        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {ACTIVITY_TABLE}
                WHERE {' AND '.join(where)}
                ORDER BY created_at {order}, rowid {order}
                LIMIT ? OFFSET ?
                """,
                params,
            )
            return [self._row_to_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()


class StepTimer:
    """
    Handle for one in-flight step. Use complete()/fail(), or as a context
    manager: normal exit completes, an exception fails and propagates.
    """

    def __init__(self, log: AgentLogger, step: str, detail: dict[str, Any]) -> None:
        self._log = log
        self.step = step
        self.detail = detail
        self._t0 = time.monotonic()
        self.finished = False

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._t0) * 1000)

    def complete(self, detail: dict[str, Any] | None = None) -> None:
        if self.finished:
            return
        self.finished = True
        self._log._write(self.step, LogStatus.COMPLETED, {**self.detail, **(detail or {})}, self.elapsed_ms)

    def fail(self, error: str, detail: dict[str, Any] | None = None) -> None:
        if self.finished:
            return
        self.finished = True
        self._log._write(
            self.step,
            LogStatus.FAILED,
            {**self.detail, **(detail or {}), "error": error},
            self.elapsed_ms,
        )

    def __enter__(self) -> StepTimer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is None:
            self.complete()
        else:
            self.fail(str(exc) or exc.__class__.__name__)


class AgentLogger:
    def __init__(self, store: ActivityLogStore, task_id: str, user_id: str, agent: str) -> None:
        self._store = store
        self.task_id = task_id
        self.user_id = user_id
        self.agent = agent

    def _write(self, step: str, status: LogStatus, detail: dict[str, Any], duration_ms: int | None) -> None:
        try:
            self._store.add_entry(
                task_id=self.task_id,
                user_id=self.user_id,
                agent=self.agent,
                step=step,
                status=status,
                detail=detail,
                duration_ms=duration_ms,
            )
        except Exception:
            logger.exception("Activity log write failed task=%s step=%s", self.task_id, step)

    def info(self, step: str, detail: dict[str, Any] | None = None, *, status: LogStatus = LogStatus.COMPLETED) -> None:
        self._write(step, status, dict(detail or {}), 0)

    def step(self, step: str, detail: dict[str, Any] | None = None) -> StepTimer:
        d = dict(detail or {})
        self._write(step, LogStatus.STARTED, d, None)
        return StepTimer(self, step, d)
