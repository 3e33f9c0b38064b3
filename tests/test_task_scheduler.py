# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio

import pytest

from jac_agents.tasks.task_models import LogStatus, TaskStatus
from jac_agents.tasks.task_scheduler import (
    execute_task,
    fail_with_parent,
    process_runnable_tasks,
    run_task_scheduler,
)

from .conftest import USER
from .fakes import FakeWorker

AGENT = "jac-search-agent"


def _parent_and_child(tasks, *, agent=AGENT):
    parent = tasks.create_task(
        user_id=USER, type="search", intent="find rust", agent="jac-dispatcher", status=TaskStatus.RUNNING
    )
    child = tasks.create_task(
        user_id=USER,
        type="search",
        intent="find rust",
        agent=agent,
        status=TaskStatus.QUEUED,
        parent_task_id=parent.id,
        input={"query": "rust"},
    )
    return parent, child


def _steps(activity, task_id):
    return [(e.step, e.status) for e in activity.list_for_task(task_id)]


@pytest.mark.asyncio
async def test_tick_completes_child_and_rolls_up_parent(runtime, tasks, activity) -> None:
    parent, child = _parent_and_child(tasks)
    worker = FakeWorker(AGENT, {"count": 3, "brief": "found"})

    n = await process_runnable_tasks(runtime, {AGENT: worker})

    assert n == 1
    assert worker.seen == [child.id]
    done = tasks.get_task(child.id)
    assert done.status == TaskStatus.COMPLETED
    assert done.output == {"count": 3, "brief": "found"}
    assert tasks.get_task(parent.id).status == TaskStatus.COMPLETED

    steps = _steps(activity, child.id)
    assert steps[0] == ("task_started", LogStatus.COMPLETED)
    assert steps[-1] == ("task_completed", LogStatus.COMPLETED)
    assert activity.list_for_task(child.id)[-1].detail["count"] == 3


@pytest.mark.asyncio
async def test_worker_error_fails_child_and_parent(runtime, tasks, activity) -> None:
    parent, child = _parent_and_child(tasks)
    worker = FakeWorker(AGENT, RuntimeError("search backend down"))

    await process_runnable_tasks(runtime, {AGENT: worker})

    failed = tasks.get_task(child.id)
    assert failed.status == TaskStatus.FAILED
    assert failed.error == "search backend down"
    p = tasks.get_task(parent.id)
    assert p.status == TaskStatus.FAILED
    assert p.error == "Child task failed: search backend down"
    assert ("task_failed", LogStatus.FAILED) in _steps(activity, child.id)


@pytest.mark.asyncio
async def test_missing_worker_fails_task(runtime, tasks) -> None:
    _parent, child = _parent_and_child(tasks, agent="jac-unknown-agent")

    await process_runnable_tasks(runtime, {})

    failed = tasks.get_task(child.id)
    assert failed.status == TaskStatus.FAILED
    assert failed.error == "No worker registered for agent jac-unknown-agent"


@pytest.mark.asyncio
async def test_timeout_fails_task(runtime, tasks) -> None:
    _parent, child = _parent_and_child(tasks)
    tasks.try_claim_task(child.id)
    task = tasks.get_task(child.id)

    status = await execute_task(runtime, FakeWorker(AGENT, delay=1.0), task, timeout_seconds=0.05)

    assert status == TaskStatus.FAILED
    assert tasks.get_task(child.id).error.startswith("Timed out")


@pytest.mark.asyncio
async def test_cancel_mid_run_stops_at_checkpoint(runtime, tasks, activity) -> None:
    parent, child = _parent_and_child(tasks)

    def cancel(ctx) -> None:
        tasks.cancel_tasks(USER, task_id=ctx.task.id)

    worker = FakeWorker(AGENT, hook=cancel, checkpoint=True)
    await process_runnable_tasks(runtime, {AGENT: worker})

    got = tasks.get_task(child.id)
    assert got.status == TaskStatus.CANCELLED
    assert got.output is None
    assert ("task_cancelled", LogStatus.SKIPPED) in _steps(activity, child.id)
    # The parent has nothing left to wait for.
    assert tasks.get_task(parent.id).status == TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_without_checkpoint_is_not_overwritten(runtime, tasks) -> None:
    _parent, child = _parent_and_child(tasks)

    def cancel(ctx) -> None:
        tasks.cancel_tasks(USER, task_id=ctx.task.id)

    # The worker "finishes" after the cancel; completion must not win.
    await process_runnable_tasks(runtime, {AGENT: FakeWorker(AGENT, hook=cancel)})

    assert tasks.get_task(child.id).status == TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_error_after_cancel_does_not_fail_parent(runtime, tasks, activity) -> None:
    parent, child = _parent_and_child(tasks)

    def cancel(ctx) -> None:
        tasks.cancel_tasks(USER, task_id=ctx.task.id)

    worker = FakeWorker(AGENT, RuntimeError("late failure"), hook=cancel)
    await process_runnable_tasks(runtime, {AGENT: worker})

    assert tasks.get_task(child.id).status == TaskStatus.CANCELLED
    p = tasks.get_task(parent.id)
    assert p.status == TaskStatus.CANCELLED
    assert p.error == "Child task cancelled"
    steps = _steps(activity, child.id)
    assert ("task_finalize_skipped", LogStatus.SKIPPED) in steps
    assert ("task_failed", LogStatus.FAILED) not in steps


def test_fail_with_parent_skips_parent_when_child_is_final(runtime, tasks) -> None:
    parent, child = _parent_and_child(tasks)
    tasks.cancel_tasks(USER, task_id=child.id)

    assert fail_with_parent(runtime, tasks.get_task(child.id), "boom") is False
    assert tasks.get_task(parent.id).status == TaskStatus.RUNNING


@pytest.mark.asyncio
async def test_swept_task_is_logged_as_finalize_skipped(runtime, tasks, activity) -> None:
    _parent, child = _parent_and_child(tasks)

    def sweep(ctx) -> None:
        tasks.update_task(ctx.task.id, status=TaskStatus.FAILED, error="Stale task")

    await process_runnable_tasks(runtime, {AGENT: FakeWorker(AGENT, hook=sweep)})

    assert tasks.get_task(child.id).status == TaskStatus.FAILED
    entries = activity.list_for_task(child.id)
    skipped = [e for e in entries if e.step == "task_finalize_skipped"]
    assert len(skipped) == 1
    assert skipped[0].status == LogStatus.SKIPPED
    assert skipped[0].detail["currentStatus"] == "failed"
    assert "task_cancelled" not in [e.step for e in entries]


@pytest.mark.asyncio
async def test_parent_waits_for_all_children(runtime, tasks) -> None:
    parent, first = _parent_and_child(tasks)
    second = tasks.create_task(
        user_id=USER,
        type="search",
        intent="second",
        agent="jac-slow-agent",
        status=TaskStatus.QUEUED,
        parent_task_id=parent.id,
    )

    await process_runnable_tasks(runtime, {AGENT: FakeWorker(AGENT)}, batch_limit=1)
    assert tasks.get_task(first.id).status == TaskStatus.COMPLETED
    assert tasks.get_task(second.id).status == TaskStatus.QUEUED
    assert tasks.get_task(parent.id).status == TaskStatus.RUNNING


@pytest.mark.asyncio
async def test_scheduler_loop_runs_queued_task_once(runtime, tasks) -> None:
    _parent, child = _parent_and_child(tasks)
    worker = FakeWorker(AGENT)

    runner = asyncio.create_task(run_task_scheduler(runtime, {AGENT: worker}, interval_seconds=0.01))

    await asyncio.sleep(0.2)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert worker.seen == [child.id], "Scheduler should run the task exactly once"
    assert tasks.get_task(child.id).status == TaskStatus.COMPLETED
