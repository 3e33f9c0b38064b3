# src/jac_agents/agents/registry.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..tasks.task_models import AgentTask, TaskStatus

DISPATCHER_AGENT = "jac-dispatcher"
RESEARCH_AGENT = "jac-research-agent"
SAVE_AGENT = "jac-save-agent"
SEARCH_AGENT = "jac-search-agent"
CODE_AGENT = "jac-code-agent"
# "general" intents are answered inline by the dispatcher.
GENERAL_AGENT = "assistant-chat"


@dataclass(slots=True, frozen=True)
class AgentDef:
    id: str
    name: str
    role: str


AGENT_DEFS: tuple[AgentDef, ...] = (
    AgentDef(DISPATCHER_AGENT, "JAC", "Boss · Routes commands"),
    AgentDef(RESEARCH_AGENT, "Scout", "Research · Web + Brain"),
    AgentDef(SAVE_AGENT, "Scribe", "Save · Classify · Store"),
    AgentDef(SEARCH_AGENT, "Oracle", "Search · Find · Connect"),
    AgentDef(CODE_AGENT, "Coder", "Code · Commit · PR"),
)

# Short labels for the ticker.
AGENT_LABELS: dict[str, str] = {
    DISPATCHER_AGENT: "JAC",
    RESEARCH_AGENT: "Research",
    SAVE_AGENT: "Save",
    SEARCH_AGENT: "Search",
    CODE_AGENT: "Code",
}

INTENT_AGENT_MAP: dict[str, str] = {
    "research": RESEARCH_AGENT,
    "save": SAVE_AGENT,
    "search": SEARCH_AGENT,
    "report": RESEARCH_AGENT,
    "code": CODE_AGENT,
    "general": GENERAL_AGENT,
}

ROUTABLE_INTENTS: tuple[str, ...] = ("research", "save", "search", "report", "general")


class AgentStatus(StrEnum):
    IDLE = "idle"
    WORKING = "working"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class AgentState:
    status: AgentStatus = AgentStatus.IDLE
    current_task: str | None = None
    last_result: str | None = None
    task_count: int = 0


def agent_label(agent: str | None) -> str:
    if not agent:
        return ""
    return AGENT_LABELS.get(agent, agent)


def agent_def(agent_id: str) -> AgentDef | None:
    for d in AGENT_DEFS:
        if d.id == agent_id:
            return d
    return None


def _last_result(task: AgentTask) -> str:
    output: dict[str, Any] = task.output or {}
    brief = output.get("brief")
    if brief:
        return str(brief)[:80]
    return task.intent or "Task completed"


def derive_agent_states(tasks: Iterable[AgentTask]) -> dict[str, AgentState]:
    """
    Roster state per agent: working > done > failed > idle.

    "done"/"failed" look at the most recently updated task of that status.
    """
    all_tasks = list(tasks)
    states: dict[str, AgentState] = {}

    for d in AGENT_DEFS:
        mine = [t for t in all_tasks if t.agent == d.id]
        running = next((t for t in mine if t.status == TaskStatus.RUNNING), None)
        recent = sorted(mine, key=lambda t: t.updated_at, reverse=True)
        last_completed = next((t for t in recent if t.status == TaskStatus.COMPLETED), None)
        last_failed = next((t for t in recent if t.status == TaskStatus.FAILED), None)

        state = AgentState(task_count=sum(1 for t in mine if t.status == TaskStatus.COMPLETED))
        if running is not None:
            state.status = AgentStatus.WORKING
            state.current_task = running.intent or running.type.value
        elif last_completed is not None:
            state.status = AgentStatus.DONE
            state.last_result = _last_result(last_completed)
        elif last_failed is not None:
            state.status = AgentStatus.FAILED

        states[d.id] = state

    return states


def agent_to_filter_key(agent: str | None) -> str:
    """Map an agent id onto the activity-feed agent filter."""
    if not agent:
        return "general"
    for key in ("research", "save", "search", "code"):
        if key in agent:
            return key
    return "general"
