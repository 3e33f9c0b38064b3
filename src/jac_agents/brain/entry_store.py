# src/jac_agents/brain/entry_store.py

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.db import SQLiteStore
from ..core.realtime import ChangeFeed, ChangeType

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "entries"


def _like_escape(word: str) -> str:
    """Make % and _ literal inside a LIKE ... ESCAPE '\\' pattern."""
    return word.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(slots=True)
class Entry:
    id: str
    user_id: str
    content: str
    title: str | None
    content_type: str
    created_at: float
    updated_at: float

    tags: list[str] = field(default_factory=list)
    event_date: str | None = None  # "YYYY-MM-DD"
    archived: bool = False
    source: str = "manual"
    image_url: str | None = None


class EntryStore(SQLiteStore):
    """SQLite store for brain entries (the user's saved content)."""

    def __init__(self, db_path: str | Path = "jac.sqlite3", *, feed: ChangeFeed | None = None) -> None:
        super().__init__(db_path, feed=feed)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {ENTRIES_TABLE} (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    title TEXT,
                    content_type TEXT NOT NULL DEFAULT 'note',
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                ENTRIES_TABLE,
                {
                    "event_date": "TEXT",
                    "archived": "INTEGER NOT NULL DEFAULT 0",
                    "source": "TEXT NOT NULL DEFAULT 'manual'",
                    "image_url": "TEXT",
                },
            )
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_entries_user ON {ENTRIES_TABLE}(user_id, created_at)")
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_entries_event ON {ENTRIES_TABLE}(user_id, event_date)")
            conn.commit()
        finally:
            conn.close()

    def _row_to_entry(self, row: sqlite3.Row) -> Entry:
        return Entry(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            content=str(row["content"] or ""),
            title=row["title"],
            content_type=str(row["content_type"] or "note"),
            tags=[str(t) for t in self._json_list(row["tags"])],
            event_date=row["event_date"],
            archived=bool(row["archived"]),
            source=str(row["source"] or "manual"),
            image_url=row["image_url"],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def add_entry(
        self,
        *,
        user_id: str,
        content: str,
        title: str | None = None,
        content_type: str = "note",
        tags: Iterable[str] | None = None,
        event_date: str | None = None,
        source: str = "manual",
        image_url: str | None = None,
    ) -> Entry:
        if not user_id:
            raise ValueError("user_id is required")

        now = time.time()
        entry = Entry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            content=content or "",
            title=title,
            content_type=content_type,
            tags=[t.strip().lower() for t in (tags or []) if t and t.strip()],
            event_date=event_date,
            source=source,
            image_url=image_url,
            created_at=now,
            updated_at=now,
        )
        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {ENTRIES_TABLE}(
                    id, user_id, content, title, content_type, tags,
                    event_date, archived, source, image_url, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.user_id,
                    entry.content,
                    entry.title,
                    entry.content_type,
                    self._to_json(entry.tags, "[]"),
                    entry.event_date,
                    entry.source,
                    entry.image_url,
                    entry.created_at,
                    entry.updated_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Entry added id=%s type=%s user=%s", entry.id, entry.content_type, user_id)
        self._publish(ENTRIES_TABLE, ChangeType.INSERT, user_id=user_id, new=entry)
        return entry

    def get_entry(self, entry_id: str) -> Entry | None:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT * FROM {ENTRIES_TABLE} WHERE id = ?", (entry_id,)).fetchone()
            return self._row_to_entry(row) if row else None
        finally:
            conn.close()

    def archive_entry(self, entry_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"UPDATE {ENTRIES_TABLE} SET archived = 1, updated_at = ? WHERE id = ? AND archived = 0",
                (time.time(), entry_id),
            )
            conn.commit()
            changed = cur.rowcount == 1
            row = conn.execute(f"SELECT * FROM {ENTRIES_TABLE} WHERE id = ?", (entry_id,)).fetchone()
        finally:
            conn.close()

        if changed and row is not None:
            entry = self._row_to_entry(row)
            self._publish(ENTRIES_TABLE, ChangeType.UPDATE, user_id=entry.user_id, new=entry)
        return changed

    def keyword_search(self, user_id: str, words: Iterable[str], *, limit: int = 10) -> list[Entry]:
        """
        Non-archived entries matching any word in content/title (newest first),
        topped up with exact tag matches for the first three words when fewer
        than 5 were found.
        """
        ws = [w for w in words if w]
        if not ws:
            return []

        like_clauses: list[str] = []
        params: list[Any] = [user_id]
        for w in ws:
            like_clauses.append("content LIKE ? ESCAPE '\\' OR title LIKE ? ESCAPE '\\'")
            pattern = f"%{_like_escape(w)}%"
            params.extend([pattern, pattern])
        params.append(int(limit))

        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {ENTRIES_TABLE}
                WHERE user_id = ? AND archived = 0
                  AND ({' OR '.join(like_clauses)})
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                params,
            )
            results = [self._row_to_entry(r) for r in cur.fetchall()]
            seen = {e.id for e in results}

            if len(results) < 5:
                for w in ws[:3]:
                    cur = conn.execute(
                        f"""
                        SELECT e.* FROM {ENTRIES_TABLE} e, json_each(e.tags) t
                        WHERE e.user_id = ? AND e.archived = 0 AND t.value = ?
                        ORDER BY e.created_at DESC
                        LIMIT 5
                        """,
                        (user_id, w.lower()),
                    )
                    for r in cur.fetchall():
                        e = self._row_to_entry(r)
                        if e.id not in seen:
                            seen.add(e.id)
                            results.append(e)
            return results
        finally:
            conn.close()

    def list_dated_entries(self, user_id: str, *, until: str) -> list[Entry]:
        """Non-archived entries with event_date <= until (ISO date strings compare lexically)."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT * FROM {ENTRIES_TABLE}
                WHERE user_id = ? AND archived = 0
                  AND event_date IS NOT NULL AND event_date <= ?
                ORDER BY event_date ASC
                """,
                (user_id, until),
            )
            return [self._row_to_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def count_entries(self, user_id: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                f"SELECT COUNT(*) FROM {ENTRIES_TABLE} WHERE user_id = ? AND archived = 0", (user_id,)
            ).fetchone()
            return int(n)
        finally:
            conn.close()
