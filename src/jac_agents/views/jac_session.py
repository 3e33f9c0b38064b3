# src/jac_agents/views/jac_session.py

from __future__ import annotations

"""
JAC command-centre state for one user: the conversation, recent tasks and
per-task activity logs, kept current through the change feed.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..agents.dispatcher import DispatchError, Dispatcher
from ..core.realtime import ChangeEvent, ChangeFeed, ChangeType, Subscription
from ..tasks.activity_log import ACTIVITY_TABLE, ActivityLogStore
from ..tasks.task_models import ActivityLogEntry, AgentTask, ConversationMessage, TaskStatus
from ..tasks.task_store import CONVERSATIONS_TABLE, TASKS_TABLE, AgentTaskStore

logger = logging.getLogger(__name__)

MESSAGE_HISTORY = 100
TASK_HISTORY = 50

NotifyFn = Callable[[str, str], None]  # (level, text)


@dataclass(slots=True)
class JacMessage:
    role: str
    content: str
    task_ids: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_stored(cls, m: ConversationMessage) -> JacMessage:
        return cls(role=m.role, content=m.content, task_ids=list(m.task_ids), timestamp=m.created_at)


def help_text_for(err: Exception) -> str:
    """Turn a dispatch failure into something the user can act on."""
    text = str(err) or "Unknown error"
    if isinstance(err, DispatchError):
        if err.status_code == 500:
            return "JAC hit an internal error. Check that JAC_OPENROUTER_API_KEY is set and the model is reachable."
        return err.message
    if "not found" in text.lower():
        return "JAC dispatcher is not available. Check the app configuration."
    return text


class JacSession:
    def __init__(
        self,
        user_id: str,
        tasks: AgentTaskStore,
        activity: ActivityLogStore,
        dispatcher: Dispatcher,
        *,
        feed: ChangeFeed | None = None,
        notify: NotifyFn | None = None,
    ) -> None:
        self.user_id = user_id
        self.tasks_store = tasks
        self.activity_store = activity
        self.dispatcher = dispatcher
        self.feed = feed
        self.notify = notify

        self._lock = threading.RLock()
        self.messages: list[JacMessage] = []
        self.tasks: list[AgentTask] = []
        self.activity_logs: dict[str, list[ActivityLogEntry]] = {}
        self.loading = True
        self.sending = False
        self.backend_ready = True
        self._subs: list[Subscription] = []

    def load_initial(self) -> None:
        if not self.user_id:
            return
        self.loading = True
        try:
            try:
                msgs = self.tasks_store.list_messages(self.user_id, limit=MESSAGE_HISTORY)
                self.backend_ready = True
            except Exception:
                logger.warning("Conversation history not available", exc_info=True)
                self.backend_ready = False
                msgs = []

            tasks = self.tasks_store.list_tasks_for_user(self.user_id, limit=TASK_HISTORY)
            active_ids = [t.id for t in tasks if t.status in (TaskStatus.RUNNING, TaskStatus.QUEUED)]
            logs = self.activity_store.list_for_tasks(active_ids) if active_ids else {}

            with self._lock:
                self.messages = [JacMessage.from_stored(m) for m in msgs]
                self.tasks = tasks
                self.activity_logs = logs
        except Exception:
            logger.warning("JAC session load failed user=%s", self.user_id, exc_info=True)
        finally:
            self.loading = False

    def start(self) -> None:
        self.load_initial()
        if self.feed is None or self._subs or not self.user_id:
            return
        self._subs = [
            self.feed.subscribe(TASKS_TABLE, self._on_task, user_id=self.user_id),
            self.feed.subscribe(CONVERSATIONS_TABLE, self._on_message, event="INSERT", user_id=self.user_id),
            self.feed.subscribe(ACTIVITY_TABLE, self._on_log, event="INSERT", user_id=self.user_id),
        ]

    def stop(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []

    # ---- live events ----

    def _on_task(self, ev: ChangeEvent) -> None:
        if ev.event_type == ChangeType.DELETE:
            old = ev.old
            task_id = getattr(old, "id", None)
            with self._lock:
                self.tasks = [t for t in self.tasks if t.id != task_id]
            return

        task = ev.new
        if not isinstance(task, AgentTask):
            return

        if ev.event_type == ChangeType.INSERT:
            with self._lock:
                self.tasks.insert(0, task)
            return

        with self._lock:
            self.tasks = [task if t.id == task.id else t for t in self.tasks]
        if task.status == TaskStatus.COMPLETED:
            self._notify("success", f"Task completed: {task.label[:60]}")
        elif task.status == TaskStatus.FAILED:
            self._notify("error", f"Task failed: {(task.error or task.intent or '')[:80]}")

    def _append_message(self, msg: JacMessage) -> bool:
        with self._lock:
            if any(m.role == msg.role and m.content == msg.content for m in self.messages):
                return False
            self.messages.append(msg)
            return True

    def _on_message(self, ev: ChangeEvent) -> None:
        if isinstance(ev.new, ConversationMessage):
            self._append_message(JacMessage.from_stored(ev.new))

    def _on_log(self, ev: ChangeEvent) -> None:
        entry = ev.new
        if not isinstance(entry, ActivityLogEntry):
            return
        with self._lock:
            self.activity_logs.setdefault(entry.task_id, []).append(entry)

    def _notify(self, level: str, text: str) -> None:
        if self.notify is None:
            return
        try:
            self.notify(level, text)
        except Exception:
            logger.exception("notify callback failed")

    # ---- actions ----

    def load_task_logs(self, task_id: str) -> list[ActivityLogEntry]:
        logs = self.activity_store.list_for_task(task_id)
        with self._lock:
            self.activity_logs[task_id] = logs
        return logs

    def send_message(self, text: str) -> JacMessage | None:
        """
        Send text to the dispatcher. Returns the assistant message appended
        (the reply or a help text), or None when nothing was sent.
        """
        trimmed = (text or "").strip()
        if not trimmed:
            return None
        with self._lock:
            if self.sending:
                return None
            self.sending = True

        try:
            with self._lock:
                self.messages.append(JacMessage(role="user", content=trimmed))
            try:
                result = self.dispatcher.dispatch(self.user_id, trimmed)
            except Exception as e:
                logger.warning("Dispatch failed user=%s: %s", self.user_id, e)
                reply = JacMessage(role="assistant", content=help_text_for(e))
                with self._lock:
                    self.messages.append(reply)
                return reply

            reply = JacMessage(
                role="assistant",
                content=result.response,
                task_ids=[t for t in (result.task_id, result.child_task_id) if t],
            )
            with self._lock:
                # The stored copy may already have arrived through the feed.
                for m in reversed(self.messages):
                    if m.role == "assistant" and m.content == reply.content and m.task_ids == reply.task_ids:
                        return m
                self.messages.append(reply)
            return reply
        finally:
            self.sending = False
