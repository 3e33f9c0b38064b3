# tests/test_realtime.py

from __future__ import annotations

import pytest

from jac_agents.core.realtime import ChangeEvent, ChangeFeed, ChangeType


def _ev(event_type=ChangeType.INSERT, *, table="agent_tasks", user_id="u1", new=None) -> ChangeEvent:
    return ChangeEvent(table=table, event_type=event_type, user_id=user_id, new=new)


def test_filters_by_table_event_and_user() -> None:
    feed = ChangeFeed()
    seen: list[ChangeEvent] = []
    feed.subscribe("agent_tasks", seen.append, event="UPDATE", user_id="u1")

    feed.publish(_ev(ChangeType.INSERT))
    feed.publish(_ev(ChangeType.UPDATE, user_id="u2"))
    feed.publish(_ev(ChangeType.UPDATE, table="entries"))
    feed.publish(_ev(ChangeType.UPDATE, new="hit"))

    assert [e.new for e in seen] == ["hit"]


def test_unsubscribe_stops_delivery() -> None:
    feed = ChangeFeed()
    seen = []
    sub = feed.subscribe("agent_tasks", seen.append)
    feed.publish(_ev())
    sub.unsubscribe()
    feed.publish(_ev())

    assert len(seen) == 1
    assert feed.subscriber_count() == 0


def test_failing_subscriber_does_not_block_others() -> None:
    feed = ChangeFeed()
    seen = []

    def boom(_ev):
        raise RuntimeError("subscriber bug")

    feed.subscribe("agent_tasks", boom)
    feed.subscribe("agent_tasks", seen.append)
    feed.publish(_ev())

    assert len(seen) == 1


def test_callbacks_may_unsubscribe_while_publishing() -> None:
    feed = ChangeFeed()
    calls = []
    holder = {}

    def once(ev):
        calls.append(ev)
        holder["sub"].unsubscribe()

    holder["sub"] = feed.subscribe("agent_tasks", once)
    feed.publish(_ev())
    feed.publish(_ev())

    assert len(calls) == 1


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        ChangeFeed().subscribe("agent_tasks", print, event="UPSERT")
