# src/jac_agents/core/realtime.py

from __future__ import annotations

"""
In-process change feed.

Stores publish a ChangeEvent after every committed INSERT/UPDATE/DELETE.
Views (ticker, activity feed, sessions) subscribe per table, optionally
filtered by event type and owning user, and keep their state current
without polling.

Delivery is synchronous, in subscription order, on the publisher's thread.
"""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeType
    user_id: str | None
    new: Any = None
    old: Any = None


ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(slots=True)
class Subscription:
    id: int
    table: str
    event: str
    user_id: str | None
    callback: ChangeCallback
    feed: "ChangeFeed"

    def matches(self, ev: ChangeEvent) -> bool:
        if ev.table != self.table:
            return False
        if self.event != "*" and ev.event_type != self.event:
            return False
        if self.user_id is not None and ev.user_id != self.user_id:
            return False
        return True

    def unsubscribe(self) -> None:
        self.feed.remove(self)


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "*",
        user_id: str | None = None,
    ) -> Subscription:
        if event != "*" and event not in ChangeType.__members__:
            raise ValueError(f"unknown event type: {event}")
        with self._lock:
            sub = Subscription(
                id=next(self._ids),
                table=table,
                event=event,
                user_id=user_id,
                callback=callback,
                feed=self,
            )
            self._subs[sub.id] = sub
        logger.debug("Subscribed id=%s table=%s event=%s user=%s", sub.id, table, event, user_id)
        return sub

    def remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.pop(sub.id, None)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, ev: ChangeEvent) -> None:
        # Snapshot so callbacks may (un)subscribe while we iterate.
        with self._lock:
            targets = [s for s in self._subs.values() if s.matches(ev)]

        for sub in targets:
            try:
                sub.callback(ev)
            except Exception:
                logger.exception(
                    "Change subscriber failed id=%s table=%s event=%s", sub.id, ev.table, ev.event_type
                )
