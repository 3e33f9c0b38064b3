# src/jac_agents/tasks/task_store.py

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..core.db import SQLiteStore
from ..core.realtime import ChangeFeed, ChangeType
from .task_models import (
    ACTIVE_STATUSES,
    CANCELLABLE_STATUSES,
    AgentTask,
    ConversationMessage,
    Reflection,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)

TASKS_TABLE = "agent_tasks"
CONVERSATIONS_TABLE = "agent_conversations"
REFLECTIONS_TABLE = "jac_reflections"

STALE_TASK_ERROR = "Timed out (stale >10min)"

_UNSET: Any = object()


def _placeholders(n: int) -> str:
    return ",".join("?" for _ in range(n))


class AgentTaskStore(SQLiteStore):
    """
    SQLite store for agent tasks, the JAC conversation and reflections.

    Status transitions that race with workers (claim, finish, cancel) are
    compare-and-set updates: the WHERE clause carries the expected statuses,
    so a cancelled row is never flipped back by a late worker.
    """

    def __init__(self, db_path: str | Path = "jac.sqlite3", *, feed: ChangeFeed | None = None) -> None:
        super().__init__(db_path, feed=feed)
        logger.info("AgentTaskStore ready db=%s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {TASKS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    parent_task_id TEXT,
                    type TEXT NOT NULL DEFAULT 'general',
                    status TEXT NOT NULL DEFAULT 'pending',
                    intent TEXT NOT NULL DEFAULT '',
                    agent TEXT,
                    input TEXT NOT NULL DEFAULT '{{}}',
                    output TEXT,
                    error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                TASKS_TABLE,
                {
                    "cost_usd": "REAL NOT NULL DEFAULT 0",
                    "tokens_in": "INTEGER NOT NULL DEFAULT 0",
                    "tokens_out": "INTEGER NOT NULL DEFAULT 0",
                    "completed_at": "REAL",
                    "cancelled_at": "REAL",
                },
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_agent_tasks_user_status ON {TASKS_TABLE}(user_id, status)")
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_agent_tasks_parent ON {TASKS_TABLE}(parent_task_id)")
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_agent_tasks_created ON {TASKS_TABLE}(user_id, created_at)")

            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {CONVERSATIONS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    task_ids TEXT NOT NULL DEFAULT '[]',
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_agent_conv_user ON {CONVERSATIONS_TABLE}(user_id, created_at)"
            )

            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {REFLECTIONS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    task_type TEXT NOT NULL,
                    intent TEXT,
                    summary TEXT NOT NULL,
                    connections TEXT,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_jac_reflections_user ON {REFLECTIONS_TABLE}(user_id, created_at)"
            )

            conn.commit()
        finally:
            conn.close()

    def _row_to_task(self, row: sqlite3.Row) -> AgentTask:
        output = self._json_dict(row["output"]) if row["output"] is not None else None
        return AgentTask(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            parent_task_id=row["parent_task_id"],
            type=TaskType.from_db(row["type"]),
            status=TaskStatus.from_db(row["status"]),
            intent=str(row["intent"] or ""),
            agent=row["agent"],
            input=self._json_dict(row["input"]),
            output=output,
            error=row["error"],
            cost_usd=float(row["cost_usd"] or 0.0),
            tokens_in=int(row["tokens_in"] or 0),
            tokens_out=int(row["tokens_out"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            cancelled_at=float(row["cancelled_at"]) if row["cancelled_at"] is not None else None,
        )

    def _fetch_tasks(self, conn: sqlite3.Connection, ids: list[str]) -> list[AgentTask]:
        if not ids:
            return []
        cur = conn.execute(f"SELECT * FROM {TASKS_TABLE} WHERE id IN ({_placeholders(len(ids))})", ids)
        return [self._row_to_task(r) for r in cur.fetchall()]

    def _publish_tasks(self, event_type: ChangeType, tasks: Iterable[AgentTask]) -> None:
        for t in tasks:
            self._publish(TASKS_TABLE, event_type, user_id=t.user_id, new=t)

    # ---- tasks: create / read ----

    def create_task(
        self,
        *,
        user_id: str,
        type: TaskType | str,
        intent: str,
        agent: str | None = None,
        status: TaskStatus = TaskStatus.PENDING,
        parent_task_id: str | None = None,
        input: dict[str, Any] | None = None,
    ) -> AgentTask:
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required")
        if not intent or not intent.strip():
            raise ValueError("intent is required")

        now = time.time()
        task = AgentTask(
            id=str(uuid.uuid4()),
            user_id=user_id,
            parent_task_id=parent_task_id,
            type=TaskType.from_db(str(type)),
            status=status,
            intent=intent.strip(),
            agent=agent,
            input=dict(input or {}),
            created_at=now,
            updated_at=now,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {TASKS_TABLE}(
                    id, user_id, parent_task_id, type, status, intent, agent,
                    input, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.user_id,
                    task.parent_task_id,
                    task.type.value,
                    task.status.value,
                    task.intent,
                    task.agent,
                    self._to_json(task.input),
                    task.created_at,
                    task.updated_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug(
            "Task created id=%s type=%s status=%s agent=%s parent=%s",
            task.id,
            task.type.value,
            task.status.value,
            task.agent,
            task.parent_task_id,
        )
        self._publish(TASKS_TABLE, ChangeType.INSERT, user_id=task.user_id, new=task)
        return task

    def get_task(self, task_id: str) -> AgentTask | None:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM {TASKS_TABLE} WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_for_user(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        status: TaskStatus | str | None = None,
        statuses: Iterable[TaskStatus] | None = None,
        agent_like: str | None = None,
    ) -> list[AgentTask]:
        """Newest first."""
        where = ["user_id = ?"]
        params: list[Any] = [user_id]

        if status is not None:
            where.append("status = ?")
            params.append(str(status))
        if statuses is not None:
            vals = [s.value for s in statuses]
            if not vals:
                return []
            where.append(f"status IN ({_placeholders(len(vals))})")
            params.extend(vals)
        if agent_like:
            where.append("agent LIKE ?")
            params.append(f"%{agent_like}%")

        params.extend([int(limit), int(offset)])

        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {TASKS_TABLE}
                WHERE {' AND '.join(where)}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                params,
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_children(self, parent_id: str) -> list[AgentTask]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"SELECT * FROM {TASKS_TABLE} WHERE parent_task_id = ? ORDER BY created_at ASC, rowid ASC",
                (parent_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_runnable_tasks(self, *, limit: int = 8) -> list[AgentTask]:
        """Queued tasks, oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {TASKS_TABLE}
                WHERE status = ?
                ORDER BY created_at ASC, rowid ASC
                LIMIT ?
                """,
                (TaskStatus.QUEUED.value, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def count_tasks(
        self,
        user_id: str | None = None,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        since: float | None = None,
    ) -> int:
        where: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            where.append("user_id = ?")
            params.append(user_id)
        if statuses is not None:
            vals = [s.value for s in statuses]
            if not vals:
                return 0
            where.append(f"status IN ({_placeholders(len(vals))})")
            params.extend(vals)
        if since is not None:
            where.append("created_at >= ?")
            params.append(float(since))

        sql = f"SELECT COUNT(*) FROM {TASKS_TABLE}"
        if where:
            sql += " WHERE " + " AND ".join(where)

        conn = self._get_conn()
        try:
            (n,) = conn.execute(sql, params).fetchone()
            return int(n)
        finally:
            conn.close()

    def count_open_children(self, parent_id: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                f"""
                SELECT COUNT(*) FROM {TASKS_TABLE}
                WHERE parent_task_id = ?
                  AND status IN ({_placeholders(len(ACTIVE_STATUSES))})
                """,
                (parent_id, *[s.value for s in ACTIVE_STATUSES]),
            ).fetchone()
            return int(n)
        finally:
            conn.close()

    # ---- tasks: transitions ----

    def try_claim_task(self, task_id: str, *, expected: Iterable[TaskStatus] = (TaskStatus.QUEUED,)) -> bool:
        """
        Atomically transitions:
          status IN expected  -> status = running

        Returns True if the row was claimed by this caller.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                UPDATE {TASKS_TABLE}
                SET status = ?, updated_at = ?
                WHERE id = ?
                  AND status IN ({_placeholders(len(exp))})
                """,
                (TaskStatus.RUNNING.value, now, task_id, *exp),
            )
            conn.commit()
            claimed = cur.rowcount == 1
            updated = self._fetch_tasks(conn, [task_id]) if claimed else []
        finally:
            conn.close()

        self._publish_tasks(ChangeType.UPDATE, updated)
        return claimed

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        output: dict[str, Any] | None = _UNSET,
        error: str | None = _UNSET,
        cost_usd: float | None = None,
        tokens_in: int | None = None,
        tokens_out: int | None = None,
        only_from: Iterable[TaskStatus] | None = None,
    ) -> bool:
        """
        Update a task row; returns True when a row changed.

        completed_at is stamped on completed/failed, cancelled_at on cancelled.
        With only_from, the update applies only while the row is in one of
        those statuses.
        """
        now = time.time()
        fields: list[str] = ["updated_at = ?"]
        params: list[Any] = [now]

        if status is not None:
            fields.append("status = ?")
            params.append(status.value)
            if status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
                fields.append("completed_at = ?")
                params.append(now)
            elif status == TaskStatus.CANCELLED:
                fields.append("cancelled_at = ?")
                params.append(now)

        if output is not _UNSET:
            fields.append("output = ?")
            params.append(None if output is None else self._to_json(output))

        if error is not _UNSET:
            fields.append("error = ?")
            params.append(error)

        if cost_usd is not None:
            fields.append("cost_usd = ?")
            params.append(float(cost_usd))
        if tokens_in is not None:
            fields.append("tokens_in = ?")
            params.append(int(tokens_in))
        if tokens_out is not None:
            fields.append("tokens_out = ?")
            params.append(int(tokens_out))

        sql = f"UPDATE {TASKS_TABLE} SET {', '.join(fields)} WHERE id = ?"
        params.append(task_id)

        if only_from is not None:
            vals = [s.value for s in only_from]
            if not vals:
                return False
            sql += f" AND status IN ({_placeholders(len(vals))})"
            params.extend(vals)

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            changed = cur.rowcount == 1
            updated = self._fetch_tasks(conn, [task_id]) if changed else []
        finally:
            conn.close()

        if changed and status is not None:
            logger.debug("Task %s -> %s", task_id, status.value)
        self._publish_tasks(ChangeType.UPDATE, updated)
        return changed

    def cancel_tasks(self, user_id: str, *, task_id: str | None = None, reason: str = "Cancelled by user") -> list[str]:
        """
        Cancel the user's cancellable tasks (or just task_id); returns the ids
        that were actually cancelled.
        """
        vals = [s.value for s in CANCELLABLE_STATUSES]
        where = f"user_id = ? AND status IN ({_placeholders(len(vals))})"
        params: list[Any] = [user_id, *vals]
        if task_id is not None:
            where += " AND id = ?"
            params.append(task_id)

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            # BEGIN IMMEDIATE so the id snapshot and the update see the same rows.
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(f"SELECT id FROM {TASKS_TABLE} WHERE {where}", params)
            ids = [str(r["id"]) for r in cur.fetchall()]
            if ids:
                cur.execute(
                    f"""
                    UPDATE {TASKS_TABLE}
                    SET status = ?, error = ?, cancelled_at = ?, updated_at = ?
                    WHERE id IN ({_placeholders(len(ids))})
                    """,
                    (TaskStatus.CANCELLED.value, reason, now, now, *ids),
                )
            conn.commit()
            updated = self._fetch_tasks(conn, ids)
        finally:
            conn.close()

        if ids:
            logger.info("Cancelled %d task(s) user=%s", len(ids), user_id)
        self._publish_tasks(ChangeType.UPDATE, updated)
        return ids

    def fail_stale_tasks(self, user_id: str | None = None, *, older_than_seconds: float = 600.0) -> list[str]:
        """Active tasks created before now - older_than_seconds become failed."""
        threshold = time.time() - float(older_than_seconds)
        vals = [s.value for s in ACTIVE_STATUSES]
        where = f"status IN ({_placeholders(len(vals))}) AND created_at < ?"
        params: list[Any] = [*vals, threshold]
        if user_id is not None:
            where += " AND user_id = ?"
            params.append(user_id)

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(f"SELECT id FROM {TASKS_TABLE} WHERE {where}", params)
            ids = [str(r["id"]) for r in cur.fetchall()]
            if ids:
                cur.execute(
                    f"""
                    UPDATE {TASKS_TABLE}
                    SET status = ?, error = ?, completed_at = ?, updated_at = ?
                    WHERE id IN ({_placeholders(len(ids))})
                    """,
                    (TaskStatus.FAILED.value, STALE_TASK_ERROR, now, now, *ids),
                )
            conn.commit()
            updated = self._fetch_tasks(conn, ids)
        finally:
            conn.close()

        if ids:
            logger.info("Failed %d stale task(s) user=%s", len(ids), user_id or "*")
        self._publish_tasks(ChangeType.UPDATE, updated)
        return ids

    def delete_task(self, task_id: str) -> bool:
        """Delete a task and its children."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(f"SELECT * FROM {TASKS_TABLE} WHERE id = ? OR parent_task_id = ?", (task_id, task_id))
            doomed = [self._row_to_task(r) for r in cur.fetchall()]
            cur.execute(f"DELETE FROM {TASKS_TABLE} WHERE id = ? OR parent_task_id = ?", (task_id, task_id))
            conn.commit()
        finally:
            conn.close()

        for t in doomed:
            self._publish(TASKS_TABLE, ChangeType.DELETE, user_id=t.user_id, old=t)
        return any(t.id == task_id for t in doomed)

    # ---- conversation ----

    def add_message(self, *, user_id: str, role: str, content: str, task_ids: list[str] | None = None) -> ConversationMessage:
        if role not in ("user", "assistant"):
            raise ValueError(f"invalid role: {role}")

        msg = ConversationMessage(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role=role,
            content=content,
            task_ids=list(task_ids or []),
            created_at=time.time(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {CONVERSATIONS_TABLE}(id, user_id, role, content, task_ids, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (msg.id, msg.user_id, msg.role, msg.content, self._to_json(msg.task_ids, "[]"), msg.created_at),
            )
            conn.commit()
        finally:
            conn.close()

        self._publish(CONVERSATIONS_TABLE, ChangeType.INSERT, user_id=user_id, new=msg)
        return msg

    def list_messages(self, user_id: str, *, limit: int = 100) -> list[ConversationMessage]:
        """The latest `limit` messages, oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM (
                    SELECT *, rowid AS _rid FROM {CONVERSATIONS_TABLE}
                    WHERE user_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                )
                ORDER BY created_at ASC, _rid ASC
                """,
                (user_id, int(limit)),
            )
            return [
                ConversationMessage(
                    id=str(r["id"]),
                    user_id=str(r["user_id"]),
                    role=str(r["role"]),
                    content=str(r["content"]),
                    task_ids=[str(x) for x in self._json_list(r["task_ids"])],
                    created_at=float(r["created_at"]),
                )
                for r in cur.fetchall()
            ]
        finally:
            conn.close()

    # ---- reflections ----

    def add_reflection(
        self,
        *,
        user_id: str,
        task_type: str,
        summary: str,
        intent: str | None = None,
        connections: list[str] | None = None,
    ) -> Reflection:
        ref = Reflection(
            id=str(uuid.uuid4()),
            user_id=user_id,
            task_type=task_type,
            intent=intent,
            summary=summary,
            connections=list(connections) if connections is not None else None,
            created_at=time.time(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {REFLECTIONS_TABLE}(id, user_id, task_type, intent, summary, connections, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ref.id,
                    ref.user_id,
                    ref.task_type,
                    ref.intent,
                    ref.summary,
                    self._to_json(ref.connections, "null") if ref.connections is not None else None,
                    ref.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        self._publish(REFLECTIONS_TABLE, ChangeType.INSERT, user_id=user_id, new=ref)
        return ref

    def list_reflections(self, user_id: str, *, limit: int = 50, offset: int = 0) -> list[Reflection]:
        """Newest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {REFLECTIONS_TABLE}
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, int(limit), int(offset)),
            )
            out: list[Reflection] = []
            for r in cur.fetchall():
                conns = self._json_list(r["connections"]) if r["connections"] is not None else None
                out.append(
                    Reflection(
                        id=str(r["id"]),
                        user_id=str(r["user_id"]),
                        task_type=str(r["task_type"]),
                        intent=r["intent"],
                        summary=str(r["summary"]),
                        connections=[str(c) for c in conns] if conns is not None else None,
                        created_at=float(r["created_at"]),
                    )
                )
            return out
        finally:
            conn.close()

