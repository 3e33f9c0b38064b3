# tests/test_registry.py

from __future__ import annotations

from jac_agents.agents.registry import (
    CODE_AGENT,
    DISPATCHER_AGENT,
    RESEARCH_AGENT,
    SEARCH_AGENT,
    AgentStatus,
    agent_def,
    agent_label,
    agent_to_filter_key,
    derive_agent_states,
)
from jac_agents.tasks.task_models import TaskStatus

from .conftest import USER


def test_labels_and_defs() -> None:
    assert agent_label(RESEARCH_AGENT) == "Research"
    assert agent_label("custom-agent") == "custom-agent"
    assert agent_label(None) == ""
    assert agent_def(DISPATCHER_AGENT).name == "JAC"
    assert agent_def("nope") is None


def test_filter_keys() -> None:
    assert agent_to_filter_key(CODE_AGENT) == "code"
    assert agent_to_filter_key("assistant-chat") == "general"
    assert agent_to_filter_key(None) == "general"


def test_derive_agent_states(tasks) -> None:
    def make(agent, status, intent="task", output=None):
        t = tasks.create_task(user_id=USER, type="search", intent=intent, agent=agent, status=TaskStatus.RUNNING)
        tasks.update_task(t.id, status=status, output=output)
        return tasks.get_task(t.id)

    all_tasks = [
        make(SEARCH_AGENT, TaskStatus.FAILED),
        make(SEARCH_AGENT, TaskStatus.COMPLETED, output={"brief": "Found 3 results"}),
        make(RESEARCH_AGENT, TaskStatus.RUNNING, intent="dig into tokio"),
        make(CODE_AGENT, TaskStatus.FAILED),
    ]

    states = derive_agent_states(all_tasks)

    assert states[SEARCH_AGENT].status == AgentStatus.DONE
    assert states[SEARCH_AGENT].last_result == "Found 3 results"
    assert states[SEARCH_AGENT].task_count == 1
    assert states[RESEARCH_AGENT].status == AgentStatus.WORKING
    assert states[RESEARCH_AGENT].current_task == "dig into tokio"
    assert states[CODE_AGENT].status == AgentStatus.FAILED
    assert states[DISPATCHER_AGENT].status == AgentStatus.IDLE
