# src/jac_agents/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires every store onto one change feed,
- builds the dispatcher, workers, cron jobs and the per-user views into AppState.
"""

from __future__ import annotations

import logging

from ..agents.dispatcher import Dispatcher
from ..agents.workers import AgentRuntime, default_workers
from ..brain.entry_store import EntryStore
from ..brain.offline_queue import OfflineQueue
from ..brain.save import SaveService
from ..config import get_settings
from ..core.ports import LLMClient
from ..core.rate_limit import RateLimiter
from ..core.realtime import ChangeFeed
from ..core.state import AppState
from ..cron.manager import CronManager, register_default_jobs
from ..llm.client import OpenRouterLLMClient
from ..llm.offline import OfflineLLMClient
from ..tasks.activity_log import ActivityLogStore
from ..tasks.task_store import AgentTaskStore
from ..views.activity_feed import ActivityFeed
from ..views.jac_session import JacSession
from ..views.ticker import TickerFeed, TickerService
from ..workspace.workspace import CodeWorkspace
from ..workspace.workspace_store import WorkspaceStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.offline_queue_path.parent.mkdir(parents=True, exist_ok=True)


def _create_llm(settings) -> LLMClient:
    try:
        return OpenRouterLLMClient(settings)
    except Exception as e:
        # Fallback for demos / local runs without external services.
        logger.info("Using offline LLM client (%s)", e)
        return OfflineLLMClient()


def create_initial_state(*, settings=None, llm: LLMClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). An explicit llm skips
    the OpenRouter/offline selection.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    feed = ChangeFeed()
    db_path = settings.db_path
    llm_client = llm if llm is not None else _create_llm(settings)

    tasks = AgentTaskStore(db_path, feed=feed)
    activity = ActivityLogStore(db_path, feed=feed)
    entries = EntryStore(db_path, feed=feed)
    workspace = WorkspaceStore(db_path, feed=feed)
    queue = OfflineQueue(settings.offline_queue_path, max_retries=settings.offline_queue_max_retries)
    saver = SaveService(
        entries,
        queue,
        max_retries=settings.save_max_retries,
        base_delay=settings.save_base_delay_seconds,
    )

    dispatcher = Dispatcher(
        tasks,
        activity,
        entries,
        llm_client,
        rate_limiter=RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds),
        max_concurrent=settings.max_concurrent_tasks,
        daily_limit=settings.daily_task_limit,
        stale_after_seconds=float(settings.stale_task_seconds),
    )
    runtime = AgentRuntime(
        tasks=tasks,
        activity=activity,
        entries=entries,
        saver=saver,
        workspace=workspace,
        llm=llm_client,
    )

    user_id = settings.user_id
    ticker = TickerFeed(TickerService(tasks, entries, workspace), feed, user_id)
    session = JacSession(user_id, tasks, activity, dispatcher, feed=feed)
    activity_feed = ActivityFeed(user_id, tasks, activity, feed=feed, page_size=settings.activity_page_size)
    code = CodeWorkspace(user_id, workspace, tasks, activity, dispatcher, feed=feed)

    cron = CronManager(db_path)
    register_default_jobs(
        cron,
        sweep_stale=lambda: tasks.fail_stale_tasks(older_than_seconds=float(settings.stale_task_seconds)),
        flush_offline_queue=saver.flush_offline_queue,
        refresh_reminders=ticker.refresh_reminders,
        prune_rate_limits=dispatcher.rate_limiter.cleanup,
    )

    state = AppState(
        settings=settings,
        user_id=user_id,
        feed=feed,
        llm=llm_client,
        tasks=tasks,
        activity=activity,
        entries=entries,
        workspace=workspace,
        offline_queue=queue,
        saver=saver,
        dispatcher=dispatcher,
        runtime=runtime,
        workers=default_workers(),
        cron=cron,
        session=session,
        ticker=ticker,
        activity_feed=activity_feed,
        code=code,
    )
    logger.info("State ready db=%s user=%s llm=%s", db_path, user_id, type(llm_client).__name__)
    return state


def start_views(state: AppState) -> None:
    """Load the per-user views and subscribe them to the change feed."""
    for name, view in (
        ("ticker", state.ticker),
        ("session", state.session),
        ("activity", state.activity_feed),
        ("code", state.code),
    ):
        try:
            view.start()
        except Exception:
            logger.exception("Failed to start %s view", name)


def stop_views(state: AppState) -> None:
    for view in (state.ticker, state.session, state.activity_feed, state.code):
        try:
            view.stop()
        except Exception:
            logger.debug("View stop failed.", exc_info=True)
