# src/jac_agents/workspace/workspace_store.py

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..core.db import SQLiteStore
from ..core.realtime import ChangeFeed, ChangeType

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "code_projects"
SESSIONS_TABLE = "code_sessions"

_UNSET: Any = object()


class SessionStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> SessionStatus:
        try:
            return cls(raw or "")
        except ValueError:
            return cls.ACTIVE


@dataclass(slots=True)
class CodeProject:
    id: str
    user_id: str
    name: str
    repo_full_name: str  # "owner/name"
    default_branch: str
    created_at: float
    updated_at: float

    tech_stack: list[str] = field(default_factory=list)
    file_tree: list[str] = field(default_factory=list)
    is_active: bool = True
    last_synced_at: float | None = None


@dataclass(slots=True)
class CodeSession:
    id: str
    user_id: str
    project_id: str
    branch_name: str
    status: SessionStatus
    created_at: float
    updated_at: float

    task_id: str | None = None
    intent: str | None = None
    pr_url: str | None = None
    pr_number: int | None = None
    files_changed: list[str] = field(default_factory=list)


class WorkspaceStore(SQLiteStore):
    """Code projects (repos the code agent may work on) and code sessions (one per code task)."""

    def __init__(self, db_path: str | Path = "jac.sqlite3", *, feed: ChangeFeed | None = None) -> None:
        super().__init__(db_path, feed=feed)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {PROJECTS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    repo_full_name TEXT NOT NULL,
                    default_branch TEXT NOT NULL DEFAULT 'main',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                PROJECTS_TABLE,
                {
                    "tech_stack": "TEXT NOT NULL DEFAULT '[]'",
                    "file_tree": "TEXT NOT NULL DEFAULT '[]'",
                    "last_synced_at": "REAL",
                },
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_code_projects_user ON {PROJECTS_TABLE}(user_id, is_active)")

            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    task_id TEXT,
                    branch_name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    intent TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                SESSIONS_TABLE,
                {
                    "pr_url": "TEXT",
                    "pr_number": "INTEGER",
                    "files_changed": "TEXT NOT NULL DEFAULT '[]'",
                },
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_code_sessions_user ON {SESSIONS_TABLE}(user_id, updated_at)")
            conn.commit()
        finally:
            conn.close()

    def _row_to_project(self, row: sqlite3.Row) -> CodeProject:
        return CodeProject(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=str(row["name"]),
            repo_full_name=str(row["repo_full_name"]),
            default_branch=str(row["default_branch"] or "main"),
            tech_stack=[str(x) for x in self._json_list(row["tech_stack"])],
            file_tree=[str(x) for x in self._json_list(row["file_tree"])],
            is_active=bool(row["is_active"]),
            last_synced_at=float(row["last_synced_at"]) if row["last_synced_at"] is not None else None,
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_session(self, row: sqlite3.Row) -> CodeSession:
        return CodeSession(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            project_id=str(row["project_id"]),
            task_id=row["task_id"],
            branch_name=str(row["branch_name"]),
            status=SessionStatus.from_db(row["status"]),
            intent=row["intent"],
            pr_url=row["pr_url"],
            pr_number=int(row["pr_number"]) if row["pr_number"] is not None else None,
            files_changed=[str(x) for x in self._json_list(row["files_changed"])],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- projects ----

    def add_project(
        self,
        *,
        user_id: str,
        repo_full_name: str,
        name: str | None = None,
        default_branch: str = "main",
        tech_stack: Iterable[str] | None = None,
    ) -> CodeProject:
        repo = (repo_full_name or "").strip()
        owner, _, repo_name = repo.partition("/")
        if not owner or not repo_name or "/" in repo_name:
            raise ValueError("repo must look like owner/name")

        now = time.time()
        project = CodeProject(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=(name or repo_name).strip(),
            repo_full_name=repo,
            default_branch=default_branch or "main",
            tech_stack=list(tech_stack or []),
            created_at=now,
            updated_at=now,
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {PROJECTS_TABLE}(
                    id, user_id, name, repo_full_name, default_branch, is_active,
                    tech_stack, file_tree, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 1, ?, '[]', ?, ?)
                """,
                (
                    project.id,
                    project.user_id,
                    project.name,
                    project.repo_full_name,
                    project.default_branch,
                    self._to_json(project.tech_stack, "[]"),
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info("Code project added id=%s repo=%s", project.id, project.repo_full_name)
        self._publish(PROJECTS_TABLE, ChangeType.INSERT, user_id=user_id, new=project)
        return project

    def get_project(self, project_id: str) -> CodeProject | None:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM {PROJECTS_TABLE} WHERE id = ?", (project_id,)).fetchone()
            return self._row_to_project(row) if row else None
        finally:
            conn.close()

    def list_active_projects(self, user_id: str) -> list[CodeProject]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {PROJECTS_TABLE}
                WHERE user_id = ? AND is_active = 1
                ORDER BY updated_at DESC, rowid DESC
                """,
                (user_id,),
            )
            return [self._row_to_project(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _update_project(self, project_id: str, sql_set: str, params: list[Any]) -> CodeProject | None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"UPDATE {PROJECTS_TABLE} SET {sql_set}, updated_at = ? WHERE id = ?",
                (*params, time.time(), project_id),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute(f"SELECT * FROM {PROJECTS_TABLE} WHERE id = ?", (project_id,)).fetchone()
        finally:
            conn.close()

        project = self._row_to_project(row)
        self._publish(PROJECTS_TABLE, ChangeType.UPDATE, user_id=project.user_id, new=project)
        return project

    def deactivate_project(self, project_id: str) -> bool:
        """Soft delete."""
        return self._update_project(project_id, "is_active = 0", []) is not None

    def update_file_tree(self, project_id: str, paths: Iterable[str]) -> CodeProject | None:
        clean = sorted({p.strip().strip("/") for p in paths if p and p.strip().strip("/")})
        return self._update_project(
            project_id,
            "file_tree = ?, last_synced_at = ?",
            [self._to_json(clean, "[]"), time.time()],
        )

    # ---- sessions ----

    def create_session(
        self,
        *,
        user_id: str,
        project_id: str,
        branch_name: str,
        task_id: str | None = None,
        intent: str | None = None,
    ) -> CodeSession:
        now = time.time()
        session = CodeSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            project_id=project_id,
            task_id=task_id,
            branch_name=branch_name,
            status=SessionStatus.ACTIVE,
            intent=intent,
            created_at=now,
            updated_at=now,
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {SESSIONS_TABLE}(
                    id, user_id, project_id, task_id, branch_name, status, intent,
                    files_changed, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, '[]', ?, ?)
                """,
                (
                    session.id,
                    user_id,
                    project_id,
                    task_id,
                    branch_name,
                    session.status.value,
                    intent,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        self._publish(SESSIONS_TABLE, ChangeType.INSERT, user_id=user_id, new=session)
        return session

    def get_session(self, session_id: str) -> CodeSession | None:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM {SESSIONS_TABLE} WHERE id = ?", (session_id,)).fetchone()
            return self._row_to_session(row) if row else None
        finally:
            conn.close()

    def update_session(
        self,
        session_id: str,
        *,
        status: SessionStatus | None = None,
        pr_url: str | None = _UNSET,
        pr_number: int | None = _UNSET,
        files_changed: list[str] | None = None,
    ) -> CodeSession | None:
        fields: list[str] = ["updated_at = ?"]
        params: list[Any] = [time.time()]
        if status is not None:
            fields.append("status = ?")
            params.append(status.value)
        if pr_url is not _UNSET:
            fields.append("pr_url = ?")
            params.append(pr_url)
        if pr_number is not _UNSET:
            fields.append("pr_number = ?")
            params.append(pr_number)
        if files_changed is not None:
            fields.append("files_changed = ?")
            params.append(self._to_json(files_changed, "[]"))
        params.append(session_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE {SESSIONS_TABLE} SET {', '.join(fields)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute(f"SELECT * FROM {SESSIONS_TABLE} WHERE id = ?", (session_id,)).fetchone()
        finally:
            conn.close()

        session = self._row_to_session(row)
        self._publish(SESSIONS_TABLE, ChangeType.UPDATE, user_id=session.user_id, new=session)
        return session

    def list_sessions(self, user_id: str, *, limit: int = 50) -> list[CodeSession]:
        """Newest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {SESSIONS_TABLE}
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (user_id, int(limit)),
            )
            return [self._row_to_session(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def latest_session(self, user_id: str) -> CodeSession | None:
        """Most recently updated session."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                f"""
                SELECT * FROM {SESSIONS_TABLE}
                WHERE user_id = ?
                ORDER BY updated_at DESC, rowid DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
            return self._row_to_session(row) if row else None
        finally:
            conn.close()
