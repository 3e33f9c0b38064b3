# tests/test_bootstrap.py

from __future__ import annotations

from jac_agents.agents.registry import CODE_AGENT, RESEARCH_AGENT, SAVE_AGENT, SEARCH_AGENT
from jac_agents.cli.bootstrap import start_views, stop_views
from jac_agents.cron.manager import (
    QUEUE_FLUSH_JOB,
    RATE_LIMIT_CLEANUP_JOB,
    STALE_SWEEP_JOB,
    TICKER_REMINDERS_JOB,
)


def test_state_is_wired(state, settings) -> None:
    assert state.user_id == settings.user_id
    assert set(state.workers) == {SAVE_AGENT, SEARCH_AGENT, RESEARCH_AGENT, CODE_AGENT}
    assert state.dispatcher.max_concurrent == settings.max_concurrent_tasks
    assert {j.jobname for j in state.cron.get_cron_status()} == {
        STALE_SWEEP_JOB,
        QUEUE_FLUSH_JOB,
        TICKER_REMINDERS_JOB,
        RATE_LIMIT_CLEANUP_JOB,
    }


def test_start_and_stop_views(state) -> None:
    start_views(state)
    assert state.feed.subscriber_count() > 0
    assert state.ticker.loading is False
    assert state.session.loading is False

    stop_views(state)
    assert state.feed.subscriber_count() == 0


def test_default_cron_jobs_run(state) -> None:
    for name in (STALE_SWEEP_JOB, QUEUE_FLUSH_JOB, TICKER_REMINDERS_JOB, RATE_LIMIT_CLEANUP_JOB):
        assert state.cron.run_now(name) is True
