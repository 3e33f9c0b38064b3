# src/jac_agents/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

A small polling loop that:
- fetches queued agent tasks,
- claims them (queued -> running, compare-and-set),
- runs the worker registered for task.agent with a timeout,
- records the outcome and rolls it up to the parent task.

Workers never touch task status themselves; everything below uses
only_from=running so a task cancelled mid-flight stays cancelled.
"""

import asyncio
import logging
import time
from collections.abc import Mapping

from ..agents.workers import AgentRuntime, TaskCancelled, WorkerContext
from ..core.ports import AgentWorker
from .activity_log import AgentLogger
from .task_models import AgentTask, LogStatus, TaskStatus

logger = logging.getLogger(__name__)


def finalize_parent(runtime: AgentRuntime, parent_id: str | None) -> bool:
    """A running parent completes once none of its children is queued/running."""
    if not parent_id:
        return False
    if runtime.tasks.count_open_children(parent_id) > 0:
        return False
    done = runtime.tasks.update_task(parent_id, status=TaskStatus.COMPLETED, only_from=(TaskStatus.RUNNING,))
    if done:
        logger.info("Parent task %s -> completed", parent_id)
    return done


def _cancel_orphaned_parent(runtime: AgentRuntime, parent_id: str | None) -> None:
    if not parent_id or runtime.tasks.count_open_children(parent_id) > 0:
        return
    runtime.tasks.update_task(
        parent_id,
        status=TaskStatus.CANCELLED,
        error="Child task cancelled",
        only_from=(TaskStatus.RUNNING,),
    )


def fail_with_parent(runtime: AgentRuntime, task: AgentTask, message: str) -> bool:
    """Fail the task, then its parent. A child that is already final leaves the parent alone."""
    failed = runtime.tasks.update_task(
        task.id,
        status=TaskStatus.FAILED,
        error=message,
        only_from=(TaskStatus.RUNNING, TaskStatus.QUEUED),
    )
    if failed and task.parent_task_id:
        runtime.tasks.update_task(
            task.parent_task_id,
            status=TaskStatus.FAILED,
            error=f"Child task failed: {message}",
            only_from=(TaskStatus.RUNNING,),
        )
    return failed


async def execute_task(
        runtime: AgentRuntime,
        worker: AgentWorker | None,
        task: AgentTask,
        *,
        timeout_seconds: float = 300.0,
) -> TaskStatus:
    """
    Run one claimed task to a terminal status and return that status.

    Never raises (except CancelledError): outcomes are recorded on the task.
    """
    agent = task.agent or "unknown"
    log = AgentLogger(runtime.activity, task.id, task.user_id, agent)
    t0 = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - t0) * 1000)

    def already_final() -> TaskStatus:
        # Cancelled or swept while the worker was finishing; leave the row be.
        current = runtime.tasks.get_task(task.id)
        status = current.status if current is not None else TaskStatus.CANCELLED
        logger.info("Task %s finished but is already %s", task.id, status.value)
        log.info(
            "task_finalize_skipped",
            {"currentStatus": status.value, "durationMs": elapsed_ms()},
            status=LogStatus.SKIPPED,
        )
        if status == TaskStatus.CANCELLED:
            _cancel_orphaned_parent(runtime, task.parent_task_id)
        return status

    def fail(message: str) -> TaskStatus:
        if not fail_with_parent(runtime, task, message):
            return already_final()
        log.info("task_failed", {"error": message, "durationMs": elapsed_ms()}, status=LogStatus.FAILED)
        return TaskStatus.FAILED

    if worker is None:
        message = f"No worker registered for agent {agent}"
        logger.warning("Task %s: %s", task.id, message)
        return fail(message)

    log.info("task_started", {"query": task.input.get("query"), "type": task.type.value})
    ctx = WorkerContext(runtime=runtime, task=task, log=log)

    try:
        output = await asyncio.wait_for(worker.run(ctx), timeout=timeout_seconds)
    except TaskCancelled as e:
        logger.info("Task %s cancelled (step=%s)", task.id, e.step)
        log.info("task_cancelled", {"step": e.step, "durationMs": elapsed_ms()}, status=LogStatus.SKIPPED)
        _cancel_orphaned_parent(runtime, task.parent_task_id)
        return TaskStatus.CANCELLED
    except asyncio.TimeoutError:
        message = f"Timed out after {int(timeout_seconds)}s"
        logger.warning("Task %s: %s", task.id, message)
        return fail(message)
    except Exception as e:
        logger.exception("Task %s failed agent=%s", task.id, agent)
        return fail(str(e) or e.__class__.__name__)

    completed = runtime.tasks.update_task(
        task.id,
        status=TaskStatus.COMPLETED,
        output=output or {},
        only_from=(TaskStatus.RUNNING,),
    )
    if not completed:
        return already_final()

    log.info("task_completed", {"durationMs": elapsed_ms(), **_completion_detail(output or {})})
    logger.info("Task %s -> completed agent=%s (%dms)", task.id, agent, elapsed_ms())

    try:
        finalize_parent(runtime, task.parent_task_id)
    except Exception:
        logger.exception("finalize_parent failed task_id=%s parent=%s", task.id, task.parent_task_id)
    return TaskStatus.COMPLETED


def _completion_detail(output: dict) -> dict:
    """Small, loggable subset of a worker output."""
    keys = ("entryId", "count", "brainEntryId", "sessionId", "branch", "prUrl", "fileCount")
    return {k: output[k] for k in keys if k in output}


async def process_runnable_tasks(
        runtime: AgentRuntime,
        workers: Mapping[str, AgentWorker],
        *,
        batch_limit: int = 8,
        task_timeout_seconds: float = 300.0,
) -> int:
    """One scheduler tick; returns how many tasks were executed."""
    tasks = runtime.tasks.list_runnable_tasks(limit=int(batch_limit))

    claimed: list[AgentTask] = []
    for task in tasks:
        try:
            if runtime.tasks.try_claim_task(task.id, expected=(TaskStatus.QUEUED,)):
                claimed.append(task)
        except Exception:
            logger.exception("try_claim_task failed task_id=%s", task.id)

    if not claimed:
        return 0

    await asyncio.gather(
        *(
            execute_task(runtime, workers.get(t.agent or ""), t, timeout_seconds=task_timeout_seconds)
            for t in claimed
        )
    )
    return len(claimed)


async def run_task_scheduler(
        runtime: AgentRuntime,
        workers: Mapping[str, AgentWorker],
        *,
        interval_seconds: float = 2.0,
        batch_limit: int = 8,
        task_timeout_seconds: float = 300.0,
) -> None:
    """
    Simple polling scheduler.

    Every interval_seconds run process_runnable_tasks(). A failing tick is
    logged and the loop keeps going. To stop the scheduler, cancel the
    coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            n = await process_runnable_tasks(
                runtime,
                workers,
                batch_limit=batch_limit,
                task_timeout_seconds=task_timeout_seconds,
            )
            if n:
                logger.debug("Scheduler tick executed %d task(s)", n)
        except Exception:
            logger.exception("Scheduler tick failed")

        await asyncio.sleep(sleep_s)
