# tests/test_offline_queue_save.py

from __future__ import annotations

import json

import pytest

from jac_agents.brain.offline_queue import OfflineQueue
from jac_agents.brain.save import SaveService, classify_content

from .conftest import USER


class BrokenEntries:
    """Entry store stand-in whose writes always fail."""

    def __init__(self) -> None:
        self.attempts = 0

    def add_entry(self, **kwargs):
        self.attempts += 1
        raise ConnectionError("store unreachable")


def test_classify_content() -> None:
    c = classify_content("Dentist 2026-11-02 remind me #health #Health")
    assert c.content_type == "reminder"
    assert c.event_date == "2026-11-02"
    assert c.tags == ["health"]

    assert classify_content("- milk\n- eggs").content_type == "list"
    assert classify_content("def f():\n    return 1").content_type == "code"
    assert classify_content("", image_url="http://x/y.png").title == "Uploaded Image"
    assert classify_content("first line\nsecond").title == "first line"


def test_save_writes_classified_entry(saver, entries) -> None:
    result = saver.save(USER, "  Launch party 2026-12-01 #work  ")

    assert result.queued is False
    assert result.entry.content == "Launch party 2026-12-01 #work"
    assert result.entry.content_type == "event"
    assert result.entry.tags == ["work"]
    assert result.message.startswith("Saved: ")
    assert entries.count_entries(USER) == 1


def test_save_requires_content(saver) -> None:
    with pytest.raises(ValueError):
        saver.save(USER, "   ")


def test_save_falls_back_to_offline_queue(offline_queue) -> None:
    broken = BrokenEntries()
    slept: list[float] = []
    retries: list[int] = []
    svc = SaveService(broken, offline_queue, max_retries=3, base_delay=1.0, sleep=slept.append)

    result = svc.save(USER, "remember this", on_retry=lambda a, _m: retries.append(a))

    assert result.queued is True
    assert broken.attempts == 3
    assert slept == [1.0, 2.0]
    assert retries == [1, 2]
    queued = offline_queue.entries()
    assert [q.id for q in queued] == [result.queue_id]
    assert queued[0].content == "remember this"


def test_flush_syncs_and_empties_queue(saver, offline_queue, entries) -> None:
    offline_queue.add(user_id=USER, content="one")
    offline_queue.add(user_id=USER, content="two")

    result = saver.flush_offline_queue()

    assert (result.synced, result.dropped, result.remaining) == (2, 0, 0)
    assert len(offline_queue) == 0
    assert entries.count_entries(USER) == 2


def test_flush_counts_retries_and_drops(tmp_path) -> None:
    q = OfflineQueue(tmp_path / "q.json", max_retries=2)
    q.add(user_id=USER, content="doomed")

    def fail(_item):
        raise ConnectionError("down")

    first = q.flush(fail)
    assert (first.synced, first.dropped, first.remaining) == (0, 0, 1)
    assert q.entries()[0].retry_count == 1

    second = q.flush(fail)
    assert (second.dropped, second.remaining) == (1, 0)
    assert len(q) == 0


def test_entries_added_during_flush_are_kept(tmp_path) -> None:
    q = OfflineQueue(tmp_path / "q.json")
    q.add(user_id=USER, content="first")

    def save_and_enqueue(_item):
        q.add(user_id=USER, content="late arrival")

    result = q.flush(save_and_enqueue)

    assert result.synced == 1
    assert [e.content for e in q.entries()] == ["late arrival"]


def test_nested_flush_is_skipped(tmp_path) -> None:
    q = OfflineQueue(tmp_path / "q.json")
    q.add(user_id=USER, content="x")
    inner = []

    def reenter(_item):
        inner.append(q.flush(lambda _i: None))

    q.flush(reenter)
    assert inner[0].skipped is True


def test_unreadable_queue_file_is_empty(tmp_path) -> None:
    path = tmp_path / "q.json"
    path.write_text("{not json", "utf-8")
    assert OfflineQueue(path).entries() == []

    path.write_text(json.dumps({"not": "a list"}), "utf-8")
    assert OfflineQueue(path).entries() == []
