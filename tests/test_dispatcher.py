# tests/test_dispatcher.py

from __future__ import annotations

import pytest

from jac_agents.agents.dispatcher import DispatchError, Dispatcher, parse_route
from jac_agents.core.rate_limit import RateLimiter
from jac_agents.tasks.task_models import TaskStatus

from .conftest import USER
from .fakes import FailingLLMClient, FakeLLMClient, route_json


def _steps(activity, task_id):
    return [e.step for e in activity.list_for_task(task_id)]


def test_dispatch_creates_running_parent_and_queued_child(dispatcher, tasks, activity) -> None:
    result = dispatcher.dispatch(USER, "find my notes about rust")

    assert result.status == "dispatched"
    assert result.intent == "search"
    assert result.agent_type == "jac-search-agent"
    assert result.task_ids == [result.task_id, result.child_task_id]

    parent = tasks.get_task(result.task_id)
    child = tasks.get_task(result.child_task_id)
    assert parent.status == TaskStatus.RUNNING
    assert parent.agent == "jac-dispatcher"
    assert parent.input["message"] == "find my notes about rust"
    assert child.status == TaskStatus.QUEUED
    assert child.agent == "jac-search-agent"
    assert child.parent_task_id == parent.id
    assert child.input["query"] == "rust"
    assert child.input["originalMessage"] == "find my notes about rust"

    assert _steps(activity, parent.id) == ["intent_parsed", "worker_dispatched"]

    msgs = tasks.list_messages(USER)
    assert [(m.role, m.content) for m in msgs] == [
        ("user", "find my notes about rust"),
        ("assistant", "On it."),
    ]
    assert msgs[1].task_ids == result.task_ids


def test_general_intent_completes_parent_without_child(tasks, activity, entries) -> None:
    llm = FakeLLMClient(route_json("general", "assistant-chat", response="Hi there."))
    d = Dispatcher(tasks, activity, entries, llm)

    result = d.dispatch(USER, "hello")

    assert result.status == "completed"
    assert result.child_task_id is None
    assert result.response == "Hi there."
    assert tasks.get_task(result.task_id).status == TaskStatus.COMPLETED
    assert _steps(activity, result.task_id) == ["intent_parsed"]


def test_non_json_router_reply_falls_back_to_general(tasks, activity, entries) -> None:
    d = Dispatcher(tasks, activity, entries, FakeLLMClient("I am not JSON"))
    result = d.dispatch(USER, "what's up")

    assert result.intent == "general"
    assert result.response == "I'm on it."


def test_code_task_type_skips_the_router(tasks, activity, entries) -> None:
    llm = FakeLLMClient("should not be called")
    d = Dispatcher(tasks, activity, entries, llm)

    result = d.dispatch(USER, "add a health endpoint", task_type="code", context={"projectId": "p1"})

    assert llm.calls == []
    child = tasks.get_task(result.child_task_id)
    assert child.agent == "jac-code-agent"
    assert child.input["context"] == {"projectId": "p1"}
    assert tasks.get_task(result.task_id).type.value == "code"


def test_brain_context_goes_into_router_prompt(dispatcher, entries, llm) -> None:
    entries.add_entry(user_id=USER, content="Rust ownership cheatsheet", title="Rust notes")

    dispatcher.dispatch(USER, "find rust ownership")

    _messages, system_prompt = llm.calls[-1]
    assert "route_intent" in system_prompt
    assert "[Rust notes]: Rust ownership cheatsheet" in system_prompt
    assert "{brain_context}" not in system_prompt


def test_unauthorized_and_empty_message(dispatcher) -> None:
    with pytest.raises(DispatchError) as e:
        dispatcher.dispatch("", "hello")
    assert e.value.status_code == 401

    with pytest.raises(DispatchError) as e:
        dispatcher.dispatch(USER, "   ")
    assert e.value.status_code == 400
    assert e.value.message == "Message is required"


def test_rate_limit(tasks, activity, entries, llm) -> None:
    d = Dispatcher(tasks, activity, entries, llm, rate_limiter=RateLimiter(1, 60.0))
    d.dispatch(USER, "find rust")

    with pytest.raises(DispatchError) as e:
        d.dispatch(USER, "find rust again")
    assert e.value.status_code == 429
    assert e.value.message == "Rate limit exceeded"


def test_concurrency_cap(tasks, activity, entries, llm) -> None:
    d = Dispatcher(tasks, activity, entries, llm, max_concurrent=2)
    d.dispatch(USER, "find rust")  # parent running + child queued

    with pytest.raises(DispatchError) as e:
        d.dispatch(USER, "find go")
    assert e.value.status_code == 429
    assert e.value.extra == {"running": 2}


def test_stale_sweep_runs_before_concurrency_check(tasks, activity, entries, llm) -> None:
    tasks.create_task(user_id=USER, type="search", intent="stuck", status=TaskStatus.RUNNING)
    d = Dispatcher(tasks, activity, entries, llm, max_concurrent=1, stale_after_seconds=-1)

    result = d.dispatch(USER, "find rust")

    assert result.status == "dispatched"
    assert tasks.count_tasks(USER, statuses=(TaskStatus.FAILED,)) == 1


def test_daily_limit(tasks, activity, entries, llm) -> None:
    d = Dispatcher(tasks, activity, entries, llm, daily_limit=2)
    d.dispatch(USER, "find rust")  # two tasks today

    with pytest.raises(DispatchError) as e:
        d.dispatch(USER, "find go")
    assert e.value.status_code == 429
    assert e.value.message == "Daily task limit reached. Try again tomorrow."
    assert e.value.extra == {"dailyCount": 2}


def test_llm_failure_is_500_and_creates_nothing(tasks, activity, entries) -> None:
    d = Dispatcher(tasks, activity, entries, FailingLLMClient("provider down"))

    with pytest.raises(DispatchError) as e:
        d.dispatch(USER, "research rust")
    assert e.value.status_code == 500
    assert tasks.count_tasks(USER) == 0


def test_parse_route_fallbacks() -> None:
    r = parse_route({"intent": "dance", "agentType": "jac-code-agent"}, "hello there")
    assert r.intent == "general"
    assert r.agent_type == "assistant-chat"
    assert r.summary == "hello there"
    assert r.extracted_query == "hello there"
    assert r.response == "I'm on it."

    r = parse_route({"intent": "REPORT"}, "q3 report")
    assert r.intent == "report"
    assert r.agent_type == "jac-research-agent"


@pytest.mark.asyncio
async def test_adispatch(dispatcher) -> None:
    result = await dispatcher.adispatch(USER, "find rust")
    assert result.child_task_id is not None
