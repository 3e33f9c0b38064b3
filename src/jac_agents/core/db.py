# src/jac_agents/core/db.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .realtime import ChangeEvent, ChangeFeed, ChangeType

logger = logging.getLogger(__name__)


class SQLiteStore:
    """
    Base for the SQLite-backed stores.

    Every call opens a short-lived connection (WAL), so stores are safe to use
    from the console thread and the background loop at once. Subclasses create
    their tables in _ensure_schema(), bring older files up to date with
    _add_missing_columns(), and call _publish() after a commit so change-feed
    subscribers see the row.
    """

    def __init__(self, db_path: str | Path, *, feed: ChangeFeed | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._feed = feed
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Nothing is held open between calls; kept so shutdown can treat stores uniformly."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA busy_timeout=30000")

    def _ensure_schema(self) -> None:
        raise NotImplementedError

    def _add_missing_columns(self, cur: sqlite3.Cursor, table: str, columns: dict[str, str]) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        existing = {row["name"] for row in cur.fetchall()}
        for name, decl in columns.items():
            if name in existing:
                continue
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
            logger.info("%s migration: added column %s.%s", type(self).__name__, table, name)

    def _publish(
        self,
        table: str,
        event_type: ChangeType,
        *,
        user_id: str | None,
        new: Any = None,
        old: Any = None,
    ) -> None:
        if self._feed is None:
            return
        self._feed.publish(ChangeEvent(table=table, event_type=event_type, user_id=user_id, new=new, old=old))

    # ---- JSON columns ----

    @staticmethod
    def _to_json(value: Any, default: str = "{}") -> str:
        if value is None:
            return default
        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode column value; storing %s.", default)
            return default

    @staticmethod
    def _json_dict(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
        except ValueError:
            return {}
        return val if isinstance(val, dict) else {}

    @staticmethod
    def _json_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            return []
        return val if isinstance(val, list) else []
