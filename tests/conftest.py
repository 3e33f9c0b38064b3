# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from jac_agents.agents.dispatcher import Dispatcher
from jac_agents.agents.workers import AgentRuntime
from jac_agents.brain.entry_store import EntryStore
from jac_agents.brain.offline_queue import OfflineQueue
from jac_agents.brain.save import SaveService
from jac_agents.cli.bootstrap import create_initial_state
from jac_agents.core.rate_limit import RateLimiter
from jac_agents.core.realtime import ChangeFeed
from jac_agents.core.state import AppState
from jac_agents.tasks.activity_log import ActivityLogStore
from jac_agents.tasks.task_store import AgentTaskStore
from jac_agents.workspace.workspace_store import WorkspaceStore

from .fakes import FakeLLMClient, route_json

USER = "user-1"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with create_initial_state().

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="jac",
        user_id=USER,
        llm_models=["test/model"],
        # Paths (tmp per test run)
        data_dir=tmp_path,
        db_path=tmp_path / "jac.sqlite3",
        offline_queue_path=tmp_path / "offline_queue.json",
        # Limits
        scheduler_interval_seconds=0.01,
        scheduler_batch_limit=8,
        task_timeout_seconds=5.0,
        stale_task_seconds=600,
        max_concurrent_tasks=10,
        daily_task_limit=200,
        rate_limit_requests=50,
        rate_limit_window_seconds=60.0,
        save_max_retries=3,
        save_base_delay_seconds=0.0,
        offline_queue_max_retries=5,
        activity_page_size=50,
        # Features
        scheduler_enabled=True,
        cron_enabled=False,
        console_enabled=False,
    )


@pytest.fixture()
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "jac.sqlite3"


@pytest.fixture()
def tasks(db_path: Path, feed: ChangeFeed) -> AgentTaskStore:
    return AgentTaskStore(db_path, feed=feed)


@pytest.fixture()
def activity(db_path: Path, feed: ChangeFeed) -> ActivityLogStore:
    return ActivityLogStore(db_path, feed=feed)


@pytest.fixture()
def entries(db_path: Path, feed: ChangeFeed) -> EntryStore:
    return EntryStore(db_path, feed=feed)


@pytest.fixture()
def workspace(db_path: Path, feed: ChangeFeed) -> WorkspaceStore:
    return WorkspaceStore(db_path, feed=feed)


@pytest.fixture()
def offline_queue(tmp_path: Path) -> OfflineQueue:
    return OfflineQueue(tmp_path / "offline_queue.json")


@pytest.fixture()
def saver(entries: EntryStore, offline_queue: OfflineQueue) -> SaveService:
    return SaveService(entries, offline_queue, max_retries=3, base_delay=0.0, sleep=lambda _s: None)


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient(route_json("search", "jac-search-agent", query="rust"))


@pytest.fixture()
def runtime(tasks, activity, entries, saver, workspace, llm) -> AgentRuntime:
    """
    NOTE: We keep real SQLite stores here because their correctness
    (status transitions, compare-and-set) is part of what we want to test.
    """
    return AgentRuntime(
        tasks=tasks,
        activity=activity,
        entries=entries,
        saver=saver,
        workspace=workspace,
        llm=llm,
    )


@pytest.fixture()
def dispatcher(tasks, activity, entries, llm) -> Dispatcher:
    return Dispatcher(tasks, activity, entries, llm, rate_limiter=RateLimiter(50, 60.0))


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """AppState wired by the real composition root, with a fake LLM."""
    return create_initial_state(settings=settings, llm=FakeLLMClient("ok"))
