# src/jac_agents/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .ports import AgentWorker, LLMClient
from .realtime import ChangeFeed

if TYPE_CHECKING:
    from ..agents.dispatcher import Dispatcher
    from ..agents.workers import AgentRuntime
    from ..brain.entry_store import EntryStore
    from ..brain.offline_queue import OfflineQueue
    from ..brain.save import SaveService
    from ..cron.manager import CronManager
    from ..tasks.activity_log import ActivityLogStore
    from ..tasks.task_store import AgentTaskStore
    from ..views.activity_feed import ActivityFeed
    from ..views.jac_session import JacSession
    from ..views.ticker import TickerFeed
    from ..workspace.workspace import CodeWorkspace
    from ..workspace.workspace_store import WorkspaceStore


@dataclass
class AppState:
    """Everything the connectors, commands and background loop share."""

    settings: Any
    user_id: str

    feed: ChangeFeed
    llm: LLMClient

    tasks: AgentTaskStore
    activity: ActivityLogStore
    entries: EntryStore
    workspace: WorkspaceStore
    offline_queue: OfflineQueue
    saver: SaveService

    dispatcher: Dispatcher
    runtime: AgentRuntime
    workers: dict[str, AgentWorker]
    cron: CronManager

    session: JacSession
    ticker: TickerFeed
    activity_feed: ActivityFeed
    code: CodeWorkspace

    lock: threading.RLock = field(default_factory=threading.RLock)
