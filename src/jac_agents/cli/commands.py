# src/jac_agents/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..agents.registry import AGENT_DEFS, agent_label, derive_agent_states
from ..core.state import AppState
from ..tasks.kill_switch import STOP_ALL, STOP_ONE, kill_switch
from ..tasks.task_models import ACTIVE_STATUSES, AgentTask, TaskStatus
from ..views.activity_feed import ActivityItem
from ..workspace.file_tree import count_files, render_tree

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

TREE_LINES = 80
SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        lines.append("  /exit - Quit.")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _task_line(t: AgentTask) -> str:
    who = agent_label(t.agent) or "?"
    line = f"  {t.id[:8]}  {t.status.value:<9} {who:<8} {t.label[:60]}"
    if t.error and t.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
        line += f"  ({t.error[:60]})"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    s = state.settings
    models = ", ".join(list(getattr(s, "llm_models", []) or []))
    running = state.tasks.count_tasks(state.user_id, statuses=ACTIVE_STATUSES)
    return (
        "Status:\n"
        f"  User: {state.user_id}\n"
        f"  LLM: {type(state.llm).__name__}\n"
        f"  Models (priority -> fallback): {models}\n"
        f"  Database: {s.db_path}\n"
        f"  Running/queued tasks: {running}\n"
        f"  Brain entries: {state.entries.count_entries(state.user_id)}\n"
        f"  Offline queue: {len(state.offline_queue)}\n"
        f"  Cron: {'running' if state.cron.running else 'stopped'}"
    )


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks            -> latest 15 tasks
    /tasks <status>   -> filter (running, queued, completed, failed, cancelled)
    /tasks <id>       -> one task with its activity log
    """
    limit = 15
    status: str | None = None
    if args:
        arg = args[0].lower()
        if arg in {s.value for s in TaskStatus}:
            status = arg
        elif arg.isdigit():
            limit = max(1, min(100, int(arg)))
        else:
            return _task_detail(state, arg)

    tasks = state.tasks.list_tasks_for_user(state.user_id, limit=limit, status=status)
    if not tasks:
        return "No tasks yet."
    return "\n".join(["Tasks (newest first):", *(_task_line(t) for t in tasks)])


def _find_task(state: AppState, prefix: str) -> AgentTask | None:
    task = state.tasks.get_task(prefix)
    if task is not None:
        return task if task.user_id == state.user_id else None
    for t in state.tasks.list_tasks_for_user(state.user_id, limit=200):
        if t.id.startswith(prefix):
            return t
    return None


def _task_detail(state: AppState, prefix: str) -> str:
    task = _find_task(state, prefix)
    if task is None:
        return f"No task matching {prefix}."
    lines = [
        f"Task {task.id}",
        f"  Agent: {task.agent or '-'}  Type: {task.type.value}  Status: {task.status.value}",
        f"  Intent: {task.intent}",
        f"  Created: {_fmt_ts(task.created_at)}  Updated: {_fmt_ts(task.updated_at)}",
    ]
    if task.error:
        lines.append(f"  Error: {task.error}")
    if task.output and task.output.get("brief"):
        lines.append(f"  Brief: {str(task.output['brief'])[:300]}")
    logs = state.session.load_task_logs(task.id)
    if logs:
        lines.append("  Steps:")
        for log in logs:
            dur = f" {log.duration_ms}ms" if log.duration_ms else ""
            lines.append(f"    {_fmt_ts(log.created_at)} {log.step:<18} {log.status.value}{dur}")
    return "\n".join(lines)


def cmd_agents(state: AppState, args: list[str]) -> str:
    tasks = state.tasks.list_tasks_for_user(state.user_id, limit=200)
    states = derive_agent_states(tasks)
    lines = ["Agents:"]
    for d in AGENT_DEFS:
        st = states[d.id]
        extra = st.current_task or st.last_result or ""
        lines.append(f"  {d.name:<7} {st.status.value:<8} done={st.task_count:<4} {d.role}  {extra[:60]}")
    return "\n".join(lines)


def cmd_kill(state: AppState, args: list[str]) -> str:
    """
    /kill all        -> cancel every running/queued/pending task
    /kill <task_id>  -> cancel one task (id or id prefix)
    """
    if not args:
        return "Usage: /kill all | /kill <task_id>"

    if args[0].lower() == "all":
        result = kill_switch(state.tasks, state.user_id, STOP_ALL)
    else:
        task = _find_task(state, args[0])
        if task is None:
            return f"No task matching {args[0]}."
        result = kill_switch(state.tasks, state.user_id, STOP_ONE, task.id)

    n = result["cancelled"]
    if not n:
        return "Nothing to cancel."
    return f"Cancelled {n} task(s). Agents stop at their next checkpoint."


def cmd_cron(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /cron                -> list jobs
    /cron on <name>      -> enable
    /cron off <name>     -> disable
    /cron run <name>     -> run once now
    """
    cron = state.cron
    if not args:
        jobs = cron.get_cron_status()
        if not jobs:
            return "No cron jobs registered."
        lines = ["Cron jobs:"]
        for j in jobs:
            last = "never"
            if j.last_run_at:
                last = f"{j.last_run_status} at {_fmt_ts(j.last_run_at)} ({j.last_run_duration or 0:.2f}s)"
            lines.append(f"  {j.jobname:<22} {j.schedule:<14} {'on ' if j.active else 'off'}  last: {last}")
        return "\n".join(lines)

    if len(args) < 2:
        return "Usage: /cron on|off|run <name>"

    sub, name = args[0].lower(), args[1]
    if sub in ("on", "off"):
        if not cron.toggle(name, sub == "on"):
            return f"Unknown cron job: {name}"
        return f"Cron job {name} is now {sub.upper()}."
    if sub == "run":
        if emit:
            with contextlib.suppress(Exception):
                emit(f"[CRON] Running {name}...")
        try:
            ok = cron.run_now(name)
        except KeyError:
            return f"Unknown cron job: {name}"
        return f"Cron job {name} {'succeeded' if ok else 'failed (see log)'}."
    return "Usage: /cron on|off|run <name>"


def cmd_ticker(state: AppState, args: list[str]) -> str:
    state.ticker.refresh_reminders()
    state.ticker.refresh_code_session()
    snap = state.ticker.snapshot
    rt = snap.running_tasks
    agents = f" ({', '.join(rt.agents)})" if rt.agents else ""
    lines = [
        f"Running: {rt.count}{agents}",
        f"Reminders: {snap.reminders.today_count} today, {snap.reminders.overdue_count} overdue",
    ]
    cs = snap.latest_code_session
    if cs is not None:
        pr = f" PR: {cs.pr_url}" if cs.pr_url else ""
        lines.append(f"Code: {cs.branch} [{cs.status}]{pr}")
    return "\n".join(lines)


def _activity_line(it: ActivityItem) -> str:
    d = it.data
    ts = _fmt_ts(it.created_at)
    if it.kind == "task":
        return f"  {ts} task     {d.status.value:<9} {agent_label(d.agent) or '-':<8} {d.label[:50]}"
    if it.kind == "activity":
        return f"  {ts} step     {d.status.value:<9} {agent_label(d.agent):<8} {d.step}"
    return f"  {ts} reflect  {d.task_type:<18} {d.summary[:50]}"


def cmd_activity(state: AppState, args: list[str]) -> str:
    """
    /activity                         -> first page
    /activity more                    -> next page
    /activity type=task agent=code status=failed
    """
    feed = state.activity_feed
    if args and args[0].lower() == "more":
        if not feed.has_more:
            return "No more activity."
        before = len(feed.items)
        items = feed.load_more()[before:]
    elif args:
        changes: dict[str, str] = {}
        for a in args:
            key, _, value = a.partition("=")
            key = {"agent": "agent_type"}.get(key.lower(), key.lower())
            if key not in ("type", "agent_type", "status") or not value:
                return "Usage: /activity [more] [type=all|task|activity|reflection] [agent=...] [status=...]"
            changes[key] = value.lower()
        try:
            items = feed.set_filters(**changes)
        except ValueError as e:
            return str(e)
    else:
        items = feed.refresh()

    if not items:
        return "No activity."
    f = feed.filters
    header = f"Activity (type={f.type} agent={f.agent_type} status={f.status}):"
    footer = ["  ... /activity more"] if feed.has_more else []
    return "\n".join([header, *(_activity_line(it) for it in items), *footer])


def cmd_queue(state: AppState, args: list[str]) -> str:
    """
    /queue        -> list offline-queued saves
    /queue flush  -> retry them now
    """
    if args and args[0].lower() == "flush":
        r = state.saver.flush_offline_queue()
        if r.skipped:
            return "A flush is already running."
        return f"Synced {r.synced}, dropped {r.dropped}, remaining {r.remaining}."

    items = state.offline_queue.entries()
    if not items:
        return "Offline queue is empty."
    lines = [f"Offline queue ({len(items)}):"]
    for q in items:
        lines.append(f"  {q.id[:8]} retries={q.retry_count} {q.content[:60]}")
    return "\n".join(lines)


def cmd_projects(state: AppState, args: list[str]) -> str:
    projects = state.workspace.list_active_projects(state.user_id)
    if not projects:
        return "No projects. Add one with /project add owner/name"
    active = state.code.active_project_id
    lines = ["Projects:"]
    for p in projects:
        mark = "*" if p.id == active else " "
        lines.append(f" {mark}{p.id[:8]} {p.repo_full_name} ({p.default_branch}) files={len(p.file_tree)}")
    return "\n".join(lines)


def _find_project(state: AppState, prefix: str):
    for p in state.workspace.list_active_projects(state.user_id):
        if p.id.startswith(prefix) or p.repo_full_name == prefix:
            return p
    return None


def _scan_dir(root: Path) -> list[str]:
    paths: list[str] = []
    for p in root.rglob("*"):
        rel = p.relative_to(root)
        if any(part in SKIP_DIRS for part in rel.parts):
            continue
        if p.is_file():
            paths.append(rel.as_posix())
    return paths


def cmd_project(state: AppState, args: list[str]) -> str:
    """
    /project add owner/name [branch]   -> register a project
    /project select <id>               -> make it active
    /project remove <id>               -> soft delete
    /project sync <id> <dir>           -> cache the file tree of a local checkout
    """
    usage = "Usage: /project add owner/name [branch] | select <id> | remove <id> | sync <id> <dir>"
    if len(args) < 2:
        return usage

    sub = args[0].lower()
    if sub == "add":
        branch = args[2] if len(args) > 2 else "main"
        project = state.code.add_project(args[1], default_branch=branch)
        if project is None:
            return "Project must look like owner/name."
        state.code.select_project(project.id)
        return f"Added project {project.repo_full_name} ({project.id[:8]})."

    project = _find_project(state, args[1])
    if project is None:
        return f"No project matching {args[1]}."

    if sub == "select":
        state.code.select_project(project.id)
        return f"Active project: {project.repo_full_name}"
    if sub == "remove":
        state.code.remove_project(project.id)
        return f"Removed project {project.repo_full_name}."
    if sub == "sync":
        if len(args) < 3:
            return usage
        root = Path(args[2]).expanduser()
        if not root.is_dir():
            return f"Not a directory: {root}"
        updated = state.workspace.update_file_tree(project.id, _scan_dir(root))
        n = len(updated.file_tree) if updated else 0
        return f"Cached {n} file(s) for {project.repo_full_name}."
    return usage


def cmd_tree(state: AppState, args: list[str]) -> str:
    if state.code.active_project is None:
        return "No active project. Use /project select <id>."
    tree = state.code.tree()
    max_lines = max(1, int(args[0])) if args and args[0].isdigit() else TREE_LINES
    lines = render_tree(tree, max_lines=max_lines)
    if not lines:
        return "File tree not synced. Use /project sync <id> <dir>."
    return "\n".join([f"{state.code.active_project.repo_full_name} ({count_files(tree)} files):", *lines])


def cmd_code(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /code <what to change>"
    if state.code.active_project is None:
        return "No active project. Use /project select <id>."
    result = state.code.send_code_command(" ".join(args))
    if result is None:
        return "Code command was not sent (see log)."
    return result.response


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show settings, LLM and queue status.")
registry.register("tasks", cmd_tasks, help_text="Recent tasks: /tasks [status|n|<id>].")
registry.register("agents", cmd_agents, help_text="Agent roster with live status.")
registry.register("kill", cmd_kill, help_text="Emergency stop: /kill all | /kill <task_id>.", aliases=["stop"])
registry.register("cron", cmd_cron, help_text="Cron jobs: /cron | /cron on|off|run <name>.")
registry.register("ticker", cmd_ticker, help_text="Running agents, reminders and latest code session.")
registry.register("activity", cmd_activity, help_text="Activity feed: /activity [more] [type=..] [agent=..] [status=..].")
registry.register("queue", cmd_queue, help_text="Offline save queue: /queue | /queue flush.")
registry.register("projects", cmd_projects, help_text="List code projects.")
registry.register("project", cmd_project, help_text="Manage code projects: /project add|select|remove|sync.")
registry.register("tree", cmd_tree, help_text="Show the active project's file tree.")
registry.register("code", cmd_code, help_text="Ask the code agent: /code <request>.")
