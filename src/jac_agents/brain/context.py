# src/jac_agents/brain/context.py

from __future__ import annotations

import logging
import re

from .entry_store import Entry, EntryStore

logger = logging.getLogger(__name__)

STOPWORDS: frozenset[str] = frozenset(
    """
    the and or is it to a an in on at for of my me do what how when where why
    can you please could would should this that with from have has just about
    been want need like find get show tell help
    """.split()
)

MAX_SEARCH_WORDS = 5
MAX_CONTEXT_ENTRIES = 5
CONTENT_PREVIEW_CHARS = 300

_WS = re.compile(r"\s+")


def extract_search_words(message: str) -> list[str]:
    words = [w for w in _WS.split((message or "").lower()) if w]
    return [w for w in words if len(w) >= 3 and w not in STOPWORDS][:MAX_SEARCH_WORDS]


def format_context_line(entry: Entry) -> str:
    tags = f" [tags: {', '.join(entry.tags)}]" if entry.tags else ""
    return f"[{entry.title or 'Untitled'}]: {entry.content[:CONTENT_PREVIEW_CHARS]}{tags}"


def build_brain_context(store: EntryStore, user_id: str, message: str) -> str:
    """Keyword-matched entries as prompt context, one per line ("" when nothing matches)."""
    words = extract_search_words(message)
    if not words:
        return ""

    hits = store.keyword_search(user_id, words, limit=10)
    if not hits:
        return ""

    logger.debug("Brain context: %d hit(s) for words=%s", len(hits), words)
    return "\n".join(format_context_line(e) for e in hits[:MAX_CONTEXT_ENTRIES])
