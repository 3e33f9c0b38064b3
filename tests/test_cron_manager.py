# tests/test_cron_manager.py

from __future__ import annotations

import pytest

from jac_agents.core.rate_limit import RateLimiter
from jac_agents.cron.manager import (
    QUEUE_FLUSH_JOB,
    RATE_LIMIT_CLEANUP_JOB,
    STALE_SWEEP_JOB,
    TICKER_REMINDERS_JOB,
    CronManager,
    register_default_jobs,
)


def _noop() -> None:
    return None


def test_register_and_status(db_path) -> None:
    cron = CronManager(db_path)
    cron.register("b-job", "*/2 * * * *", _noop, command="b()")
    cron.register("a-job", "0 3 * * *", _noop)

    jobs = cron.get_cron_status()
    assert [j.jobname for j in jobs] == ["a-job", "b-job"]
    assert jobs[1].command == "b()"
    assert jobs[1].active is True
    assert jobs[1].last_run_status is None


def test_bad_schedule_and_name(db_path) -> None:
    cron = CronManager(db_path)
    with pytest.raises(ValueError):
        cron.register("bad", "every minute", _noop)
    with pytest.raises(ValueError):
        cron.register("  ", "* * * * *", _noop)
    assert cron.get_cron_status() == []


def test_toggle_persists_across_restarts(db_path) -> None:
    cron = CronManager(db_path)
    cron.register("job", "* * * * *", _noop)
    assert cron.toggle("job", False) is True
    assert cron.toggle("unknown", False) is False

    again = CronManager(db_path)
    job = again.register("job", "*/10 * * * *", _noop)
    assert job.active is False
    assert job.schedule == "*/10 * * * *"


def test_run_now_records_history(db_path) -> None:
    cron = CronManager(db_path)
    calls = []
    cron.register("ok", "* * * * *", lambda: calls.append(1))

    def broken() -> None:
        raise RuntimeError("disk full")

    cron.register("broken", "* * * * *", broken)

    assert cron.run_now("ok") is True
    assert cron.run_now("broken") is False
    assert calls == [1]

    status = {j.jobname: j for j in cron.get_cron_status()}
    assert status["ok"].last_run_status == "succeeded"
    assert status["ok"].last_run_duration is not None
    assert status["broken"].last_run_status == "failed"

    with pytest.raises(KeyError):
        cron.run_now("missing")


def test_default_jobs(db_path) -> None:
    cron = CronManager(db_path)
    register_default_jobs(
        cron,
        sweep_stale=_noop,
        flush_offline_queue=_noop,
        refresh_reminders=_noop,
        prune_rate_limits=_noop,
    )

    schedules = {j.jobname: j.schedule for j in cron.get_cron_status()}
    assert schedules == {
        STALE_SWEEP_JOB: "*/5 * * * *",
        QUEUE_FLUSH_JOB: "*/2 * * * *",
        TICKER_REMINDERS_JOB: "*/5 * * * *",
        RATE_LIMIT_CLEANUP_JOB: "*/5 * * * *",
    }


def test_rate_limit_cleanup_job_prunes_expired_windows(db_path) -> None:
    now = [1000.0]
    limiter = RateLimiter(1, 60.0, clock=lambda: now[0])
    limiter.check("user-a")
    limiter.check("user-b")

    cron = CronManager(db_path)
    register_default_jobs(
        cron,
        sweep_stale=_noop,
        flush_offline_queue=_noop,
        refresh_reminders=_noop,
        prune_rate_limits=limiter.cleanup,
    )

    assert cron.run_now(RATE_LIMIT_CLEANUP_JOB) is True
    assert limiter.cleanup() == 0  # windows still open

    now[0] += 61
    assert cron.run_now(RATE_LIMIT_CLEANUP_JOB) is True
    assert limiter._windows == {}
    assert limiter.check("user-a").allowed


@pytest.mark.asyncio
async def test_scheduler_lifecycle(db_path) -> None:
    cron = CronManager(db_path)
    cron.register("on", "* * * * *", _noop)
    cron.register("off", "* * * * *", _noop)
    cron.toggle("off", False)

    cron.start()
    try:
        assert cron.running is True
        sched = cron._scheduler
        assert sched.get_job("on").next_run_time is not None
        assert sched.get_job("off").next_run_time is None

        cron.toggle("on", False)
        assert sched.get_job("on").next_run_time is None
        cron.toggle("off", True)
        assert sched.get_job("off").next_run_time is not None

        # Registering while running schedules right away.
        cron.register("late", "*/5 * * * *", _noop)
        assert sched.get_job("late") is not None
    finally:
        cron.shutdown()

    assert cron.running is False
