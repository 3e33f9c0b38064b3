# tests/test_kill_switch.py

from __future__ import annotations

import pytest

from jac_agents.tasks.kill_switch import INVALID_ACTION, kill_switch
from jac_agents.tasks.task_models import TaskStatus

from .conftest import USER


def test_stop_all(tasks) -> None:
    a = tasks.create_task(user_id=USER, type="search", intent="a", status=TaskStatus.RUNNING)
    b = tasks.create_task(user_id=USER, type="search", intent="b", status=TaskStatus.QUEUED)
    tasks.create_task(user_id=USER, type="search", intent="c", status=TaskStatus.COMPLETED)

    result = kill_switch(tasks, USER, "stop_all")

    assert result["success"] is True
    assert result["action"] == "stop_all"
    assert result["cancelled"] == 2
    assert set(result["cancelledIds"]) == {a.id, b.id}


def test_stop_one(tasks) -> None:
    a = tasks.create_task(user_id=USER, type="search", intent="a", status=TaskStatus.RUNNING)
    b = tasks.create_task(user_id=USER, type="search", intent="b", status=TaskStatus.RUNNING)

    result = kill_switch(tasks, USER, "stop_one", a.id, reason="enough")

    assert result["cancelledIds"] == [a.id]
    assert tasks.get_task(a.id).error == "enough"
    assert tasks.get_task(b.id).status == TaskStatus.RUNNING


def test_stop_all_with_nothing_running(tasks) -> None:
    assert kill_switch(tasks, USER, "stop_all")["cancelled"] == 0


def test_invalid_requests(tasks) -> None:
    with pytest.raises(PermissionError):
        kill_switch(tasks, "", "stop_all")
    with pytest.raises(ValueError, match="Invalid action"):
        kill_switch(tasks, USER, "stop_one")
    with pytest.raises(ValueError) as e:
        kill_switch(tasks, USER, "pause")
    assert str(e.value) == INVALID_ACTION
