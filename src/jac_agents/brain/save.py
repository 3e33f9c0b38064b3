# src/jac_agents/brain/save.py

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core.retry import RetryCallback, retry_with_backoff
from .entry_store import Entry, EntryStore
from .offline_queue import FlushResult, OfflineQueue, QueuedEntry

logger = logging.getLogger(__name__)

TITLE_CHARS = 50

_HASHTAG = re.compile(r"(?<!\w)#([\w-]{2,40})")
_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_LIST_LINE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_CODE_HINT = re.compile(r"```|^\s*(?:def|class|import|function|const|let)\s", re.MULTILINE)


@dataclass(slots=True, frozen=True)
class Classification:
    title: str
    content_type: str
    tags: list[str]
    event_date: str | None


@dataclass(slots=True, frozen=True)
class SaveResult:
    entry: Entry | None = None
    queued: bool = False
    queue_id: str | None = None

    @property
    def message(self) -> str:
        if self.queued:
            return "Saved offline. Will sync when the store is reachable."
        if self.entry is None:
            return "Nothing saved."
        return f"Saved: {self.entry.title or 'Untitled'} · {self.entry.content_type}"


def classify_content(content: str, image_url: str | None = None) -> Classification:
    """Local rule-based classification: title, type, #tags and an ISO event date."""
    text = (content or "").strip()
    title = text[:TITLE_CHARS] or ("Uploaded Image" if image_url else "Untitled")
    title = title.splitlines()[0] if title else title

    tags = list(dict.fromkeys(t.lower() for t in _HASHTAG.findall(text)))
    m = _ISO_DATE.search(text)
    event_date = m.group(1) if m else None

    lines = [ln for ln in text.splitlines() if ln.strip()]
    if image_url and not text:
        ctype = "image"
    elif _CODE_HINT.search(text):
        ctype = "code"
    elif len(lines) >= 2 and sum(1 for ln in lines if _LIST_LINE.match(ln)) >= 2:
        ctype = "list"
    elif event_date is not None:
        ctype = "reminder" if "remind" in text.lower() else "event"
    else:
        ctype = "note"

    return Classification(title=title, content_type=ctype, tags=tags, event_date=event_date)


class SaveService:
    """
    The save path: classify, write with exponential backoff, and fall back to
    the offline queue when every attempt fails.
    """

    def __init__(
        self,
        entries: EntryStore,
        queue: OfflineQueue,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.entries = entries
        self.queue = queue
        self.max_retries = int(max_retries)
        self.base_delay = float(base_delay)
        self._sleep = sleep

    def _write(self, *, user_id: str, content: str, source: str, image_url: str | None) -> Entry:
        c = classify_content(content, image_url)
        return self.entries.add_entry(
            user_id=user_id,
            content=content,
            title=c.title,
            content_type=c.content_type,
            tags=c.tags,
            event_date=c.event_date,
            source=source,
            image_url=image_url,
        )

    def save(
        self,
        user_id: str,
        content: str,
        *,
        source: str = "manual",
        image_url: str | None = None,
        on_retry: RetryCallback | None = None,
    ) -> SaveResult:
        content = (content or "").strip()
        if not content and not image_url:
            raise ValueError("content or image_url is required")

        try:
            entry = retry_with_backoff(
                lambda: self._write(user_id=user_id, content=content, source=source, image_url=image_url),
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                on_retry=on_retry,
                sleep=self._sleep,
            )
        except Exception:
            logger.exception("Save failed after %d attempts; queueing offline.", self.max_retries)
            queued = self.queue.add(user_id=user_id, content=content, source=source, image_url=image_url)
            return SaveResult(queued=True, queue_id=queued.id)

        return SaveResult(entry=entry)

    def replay(self, item: QueuedEntry) -> Entry:
        """Single attempt for an offline-queue entry (the queue counts retries)."""
        return self._write(user_id=item.user_id, content=item.content, source=item.source, image_url=item.image_url)

    def flush_offline_queue(self) -> FlushResult:
        return self.queue.flush(self.replay)
