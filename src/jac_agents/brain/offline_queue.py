# src/jac_agents/brain/offline_queue.py

from __future__ import annotations

"""
Offline save queue.

Saves that still fail after retries are parked in a JSON file and replayed
later by flush() (on a cron tick or via /queue flush). Each replay failure
bumps retry_count; an entry is dropped once it reaches max_retries.
"""

import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


@dataclass(slots=True)
class QueuedEntry:
    id: str
    user_id: str
    content: str
    source: str
    image_url: str | None
    timestamp: float
    retry_count: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> QueuedEntry:
        return cls(
            id=str(d.get("id") or f"queue-{uuid.uuid4().hex}"),
            user_id=str(d.get("user_id") or ""),
            content=str(d.get("content") or ""),
            source=str(d.get("source") or "manual"),
            image_url=d.get("image_url"),
            timestamp=float(d.get("timestamp") or 0.0),
            retry_count=int(d.get("retry_count") or 0),
        )


@dataclass(slots=True, frozen=True)
class FlushResult:
    synced: int = 0
    dropped: int = 0
    remaining: int = 0
    skipped: bool = False  # another flush was already running


class OfflineQueue:
    def __init__(self, path: str | Path, *, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._path = Path(path)
        self.max_retries = int(max_retries)
        self._lock = threading.Lock()
        self._flushing = False

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> list[QueuedEntry]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Offline queue at %s is unreadable; treating it as empty.", self._path)
            return []
        if not isinstance(data, list):
            return []
        return [QueuedEntry.from_dict(d) for d in data if isinstance(d, dict)]

    def _write(self, entries: list[QueuedEntry]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps([asdict(e) for e in entries], ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)

    def add(self, *, user_id: str, content: str, source: str = "manual", image_url: str | None = None) -> QueuedEntry:
        entry = QueuedEntry(
            id=f"queue-{uuid.uuid4().hex}",
            user_id=user_id,
            content=content,
            source=source,
            image_url=image_url,
            timestamp=time.time(),
        )
        with self._lock:
            entries = self._read()
            entries.append(entry)
            self._write(entries)
            size = len(entries)
        logger.info("Offline queue: added entry %s (size=%d)", entry.id, size)
        return entry

    def entries(self) -> list[QueuedEntry]:
        with self._lock:
            return self._read()

    def __len__(self) -> int:
        return len(self.entries())

    def flush(self, save_fn: Callable[[QueuedEntry], Any]) -> FlushResult:
        """
        Replay every queued entry through save_fn.

        A flush already in progress makes this call a no-op. Entries added
        while flushing are kept.
        """
        with self._lock:
            if self._flushing:
                return FlushResult(skipped=True)
            snapshot = self._read()
            if not snapshot:
                return FlushResult()
            self._flushing = True

        logger.info("Offline queue: flushing %d entries...", len(snapshot))
        synced = 0
        dropped = 0
        survivors: list[QueuedEntry] = []
        processed = 0

        try:
            for entry in snapshot:
                try:
                    save_fn(entry)
                    synced += 1
                    logger.debug("Offline queue: synced entry %s", entry.id)
                except Exception as e:
                    entry.retry_count += 1
                    if entry.retry_count < self.max_retries:
                        logger.info("Offline queue: entry %s failed (%s), retry %d", entry.id, e, entry.retry_count)
                        survivors.append(entry)
                    else:
                        dropped += 1
                        logger.warning(
                            "Offline queue: dropping entry %s after %d retries", entry.id, self.max_retries
                        )
                processed += 1
        finally:
            with self._lock:
                seen = {e.id for e in snapshot}
                added_meanwhile = [e for e in self._read() if e.id not in seen]
                remaining = survivors + snapshot[processed:] + added_meanwhile
                self._write(remaining)
                self._flushing = False

        if remaining:
            logger.info("Offline queue: %d entries still pending", len(remaining))
        return FlushResult(synced=synced, dropped=dropped, remaining=len(remaining))
