# src/jac_agents/workspace/workspace.py

from __future__ import annotations

"""
Code workspace state for one user.

Projects, code sessions, the selected project's file tree, the code agent's
terminal log and the chat derived from it. Commands go through the
dispatcher with task_type="code"; the change feed keeps everything current.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..agents.dispatcher import DispatchResult, Dispatcher
from ..agents.registry import CODE_AGENT
from ..core.realtime import ChangeEvent, ChangeFeed, ChangeType, Subscription
from ..tasks.activity_log import ACTIVITY_TABLE, ActivityLogStore
from ..tasks.kill_switch import STOP_ONE, kill_switch
from ..tasks.task_models import ActivityLogEntry, AgentTask, LogStatus, TaskStatus, TaskType
from ..tasks.task_store import TASKS_TABLE, AgentTaskStore
from .file_tree import TreeNode, build_file_tree
from .workspace_store import (
    PROJECTS_TABLE,
    SESSIONS_TABLE,
    CodeProject,
    CodeSession,
    SessionStatus,
    WorkspaceStore,
)

logger = logging.getLogger(__name__)

SESSION_HISTORY = 50
LOG_BACKFILL = 200
CANCEL_REASON = "Cancelled by user from Code Workspace"
CHAT_STEPS = ("plan", "write_code", "read_file", "open_pr", "create_branch")

NotifyFn = Callable[[str, str], None]  # (level, text)


@dataclass(slots=True)
class ChatMessage:
    id: str
    role: str  # "user" | "agent" | "system"
    content: str
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] | None = None


def chat_message_for_log(log: ActivityLogEntry, *, live: bool = False) -> ChatMessage | None:
    """
    The chat line a code-agent log entry turns into, if any.

    Plain step lines (plan, read_file, ...) only show up live; the history
    backfill keeps the chat to starts, results and failures.
    """
    detail = log.detail or {}
    if log.step == "task_started":
        what = detail.get("intent") or detail.get("query") or "code task"
        return ChatMessage(f"sys-{log.id}", "system", f"Task started: {what}", log.created_at)
    if log.step == "task_completed":
        parts = ["Task completed"]
        if detail.get("prUrl"):
            parts.append(f"PR: {detail['prUrl']}")
        if detail.get("fileCount"):
            parts.append(f"Files: {detail['fileCount']}")
        if detail.get("branch"):
            parts.append(f"Branch: {detail['branch']}")
        return ChatMessage(log.id, "agent", "\n".join(parts), log.created_at, metadata=dict(detail))
    if log.step == "task_failed" or log.status == LogStatus.FAILED:
        return ChatMessage(f"err-{log.id}", "system", f"Failed: {detail.get('error') or log.step}", log.created_at)
    if live and log.step in CHAT_STEPS and log.status != LogStatus.STARTED:
        return ChatMessage(f"step-{log.id}", "system", f"{log.step.replace('_', ' ')}...", log.created_at)
    return None


class CodeWorkspace:
    def __init__(
        self,
        user_id: str,
        workspace: WorkspaceStore,
        tasks: AgentTaskStore,
        activity: ActivityLogStore,
        dispatcher: Dispatcher,
        *,
        feed: ChangeFeed | None = None,
        notify: NotifyFn | None = None,
    ) -> None:
        self.user_id = user_id
        self.store = workspace
        self.tasks = tasks
        self.activity = activity
        self.dispatcher = dispatcher
        self.feed = feed
        self.notify = notify

        self._lock = threading.RLock()
        self.projects: list[CodeProject] = []
        self.sessions: list[CodeSession] = []
        self.active_project_id: str | None = None
        self.active_session: CodeSession | None = None
        self.file_tree: list[str] = []
        self.terminal_logs: list[ActivityLogEntry] = []
        self.chat_messages: list[ChatMessage] = []
        self.loading = True
        self.sending = False
        self._subs: list[Subscription] = []

    @property
    def active_project(self) -> CodeProject | None:
        with self._lock:
            return next((p for p in self.projects if p.id == self.active_project_id), None)

    def tree(self) -> TreeNode:
        return build_file_tree(self.file_tree)

    # ---- loading ----

    def _session_is_live(self, session: CodeSession) -> bool:
        if not session.task_id:
            return False
        task = self.tasks.get_task(session.task_id)
        return task is not None and task.status == TaskStatus.RUNNING

    def load_initial(self) -> None:
        if not self.user_id:
            return
        self.loading = True
        try:
            projects = self.store.list_active_projects(self.user_id)
            sessions = self.store.list_sessions(self.user_id, limit=SESSION_HISTORY)

            active_session: CodeSession | None = None
            active = next((s for s in sessions if s.status == SessionStatus.ACTIVE), None)
            if active is not None:
                if self._session_is_live(active):
                    active_session = active
                else:
                    logger.info("Closing stale code session id=%s", active.id)
                    cleaned = self.store.update_session(active.id, status=SessionStatus.COMPLETED)
                    if cleaned is not None:
                        sessions = [cleaned if s.id == cleaned.id else s for s in sessions]

            with self._lock:
                self.projects = projects
                self.sessions = sessions
                self.active_session = active_session
                if active_session is not None:
                    self._select_locked(active_session.project_id)

            self._backfill_logs()
        except Exception:
            logger.warning("Code workspace load failed user=%s", self.user_id, exc_info=True)
        finally:
            self.loading = False

    def _backfill_logs(self) -> None:
        try:
            logs = self.activity.list_for_user(
                self.user_id,
                agent=CODE_AGENT,
                limit=LOG_BACKFILL,
                newest_first=False,
            )
        except Exception:
            logger.warning("Code log backfill failed", exc_info=True)
            return
        msgs = [m for m in (chat_message_for_log(log) for log in logs) if m is not None]
        with self._lock:
            self.terminal_logs = logs
            self.chat_messages = msgs

    def start(self) -> None:
        self.load_initial()
        if self.feed is None or self._subs or not self.user_id:
            return
        self._subs = [
            self.feed.subscribe(PROJECTS_TABLE, self._on_project, user_id=self.user_id),
            self.feed.subscribe(SESSIONS_TABLE, self._on_session, user_id=self.user_id),
            self.feed.subscribe(TASKS_TABLE, self._on_task, user_id=self.user_id),
            self.feed.subscribe(ACTIVITY_TABLE, self._on_log, event="INSERT", user_id=self.user_id),
        ]

    def stop(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []

    # ---- actions ----

    def add_project(
        self,
        repo_full_name: str,
        name: str | None = None,
        tech_stack: Iterable[str] | None = None,
        default_branch: str = "main",
        *,
        file_tree: Iterable[str] | None = None,
    ) -> CodeProject | None:
        try:
            project = self.store.add_project(
                user_id=self.user_id,
                repo_full_name=repo_full_name,
                name=name,
                default_branch=default_branch,
                tech_stack=tech_stack,
            )
            if file_tree is not None:
                project = self.store.update_file_tree(project.id, file_tree) or project
        except ValueError as e:
            self._notify("error", f"Failed to add project: {e}")
            return None
        if self.feed is None:
            with self._lock:
                self.projects.insert(0, project)
        self._notify("success", f"Added project: {project.name}")
        return project

    def remove_project(self, project_id: str) -> bool:
        ok = self.store.deactivate_project(project_id)
        if not ok:
            self._notify("error", "Failed to remove project")
            return False
        if self.feed is None:
            with self._lock:
                self._drop_project_locked(project_id)
        self._notify("info", "Project removed")
        return True

    def _drop_project_locked(self, project_id: str) -> None:
        self.projects = [p for p in self.projects if p.id != project_id]
        if self.active_project_id == project_id:
            self.active_project_id = None
            self.file_tree = []

    def _select_locked(self, project_id: str) -> None:
        self.active_project_id = project_id
        project = next((p for p in self.projects if p.id == project_id), None)
        self.file_tree = list(project.file_tree) if project is not None else []

    def select_project(self, project_id: str) -> CodeProject | None:
        with self._lock:
            self._select_locked(project_id)
        return self.active_project

    def send_code_command(self, message: str) -> DispatchResult | None:
        trimmed = (message or "").strip()
        with self._lock:
            if not trimmed or self.sending:
                return None
            self.sending = True
            self.chat_messages.append(ChatMessage(str(uuid.uuid4()), "user", trimmed))
            project = next((p for p in self.projects if p.id == self.active_project_id), None)

        context: dict[str, Any] = {}
        if project is not None:
            context = {
                "projectId": project.id,
                "repoFullName": project.repo_full_name,
                "branch": project.default_branch,
                "techStack": list(project.tech_stack),
            }
        try:
            return self.dispatcher.dispatch(self.user_id, trimmed, context=context, task_type=TaskType.CODE)
        except Exception as e:
            logger.warning("Code command failed user=%s: %s", self.user_id, e)
            self._notify("error", f"Code command failed: {e}")
            return None
        finally:
            self.sending = False

    def cancel_task(self, task_id: str) -> bool:
        try:
            result = kill_switch(self.tasks, self.user_id, STOP_ONE, task_id, reason=CANCEL_REASON)
        except Exception:
            logger.exception("Cancel failed task=%s", task_id)
            self._notify("error", "Failed to cancel task")
            return False
        if not result["cancelledIds"]:
            self._notify("error", "Failed to cancel task")
            return False
        self._notify("info", "Task cancelled; agent will stop at next checkpoint")
        return True

    # ---- live events ----

    def _on_project(self, ev: ChangeEvent) -> None:
        with self._lock:
            if ev.event_type == ChangeType.DELETE:
                self._drop_project_locked(getattr(ev.old, "id", ""))
                return
            project = ev.new
            if not isinstance(project, CodeProject):
                return
            if ev.event_type == ChangeType.INSERT:
                self.projects.insert(0, project)
            elif not project.is_active:
                self._drop_project_locked(project.id)
            else:
                self.projects = [project if p.id == project.id else p for p in self.projects]
                if project.id == self.active_project_id:
                    self.file_tree = list(project.file_tree)

    def _on_session(self, ev: ChangeEvent) -> None:
        session = ev.new
        if not isinstance(session, CodeSession):
            return
        finished: CodeSession | None = None
        with self._lock:
            if ev.event_type == ChangeType.INSERT:
                self.sessions.insert(0, session)
                if session.status == SessionStatus.ACTIVE:
                    self.active_session = session
            elif ev.event_type == ChangeType.UPDATE:
                self.sessions = [session if s.id == session.id else s for s in self.sessions]
                if session.status == SessionStatus.ACTIVE:
                    self.active_session = session
                elif self.active_session is not None and self.active_session.id == session.id:
                    self.active_session = None
                    finished = session
        if finished is not None:
            intent = (finished.intent or "")[:60]
            if finished.status == SessionStatus.COMPLETED:
                self._notify("success", f"Session completed: {intent}")
            elif finished.status == SessionStatus.FAILED:
                self._notify("error", f"Session failed: {intent}")

    def _on_task(self, ev: ChangeEvent) -> None:
        task = ev.new
        if ev.event_type == ChangeType.DELETE or not isinstance(task, AgentTask):
            return
        if task.type != TaskType.CODE:
            return
        if task.status == TaskStatus.COMPLETED:
            self._notify("success", f"Code task completed: {(task.intent or '')[:60]}")
        elif task.status == TaskStatus.FAILED:
            self._notify("error", f"Code task failed: {(task.error or '')[:80]}")

    def _on_log(self, ev: ChangeEvent) -> None:
        log = ev.new
        if not isinstance(log, ActivityLogEntry) or log.agent != CODE_AGENT:
            return
        msg = chat_message_for_log(log, live=True)
        with self._lock:
            self.terminal_logs.append(log)
            if msg is not None:
                self.chat_messages.append(msg)

    def _notify(self, level: str, text: str) -> None:
        if self.notify is None:
            return
        try:
            self.notify(level, text)
        except Exception:
            logger.exception("notify callback failed")
