# tests/test_jac_session.py

from __future__ import annotations

from jac_agents.agents.dispatcher import DispatchError, Dispatcher
from jac_agents.core.rate_limit import RateLimiter
from jac_agents.tasks.activity_log import AgentLogger
from jac_agents.tasks.task_models import TaskStatus
from jac_agents.views.jac_session import JacSession, help_text_for

from .conftest import USER
from .fakes import FailingLLMClient


def _session(tasks, activity, dispatcher, feed=None, notes=None) -> JacSession:
    notify = (lambda level, text: notes.append((level, text))) if notes is not None else None
    return JacSession(USER, tasks, activity, dispatcher, feed=feed, notify=notify)


def test_help_text_for() -> None:
    assert help_text_for(DispatchError(500, "boom")).startswith("JAC hit an internal error.")
    assert help_text_for(DispatchError(429, "Rate limit exceeded")) == "Rate limit exceeded"
    assert help_text_for(RuntimeError("Function not found")).startswith("JAC dispatcher is not available")
    assert help_text_for(RuntimeError("")) == "Unknown error"


def test_load_initial(tasks, activity, dispatcher) -> None:
    tasks.add_message(user_id=USER, role="user", content="hi")
    running = tasks.create_task(user_id=USER, type="search", intent="a", status=TaskStatus.RUNNING)
    done = tasks.create_task(user_id=USER, type="search", intent="b", status=TaskStatus.COMPLETED)
    AgentLogger(activity, running.id, USER, "jac-search-agent").info("search_memory")
    AgentLogger(activity, done.id, USER, "jac-search-agent").info("search_memory")

    s = _session(tasks, activity, dispatcher)
    s.load_initial()

    assert s.loading is False
    assert s.backend_ready is True
    assert [m.content for m in s.messages] == ["hi"]
    assert [t.id for t in s.tasks] == [done.id, running.id]
    assert set(s.activity_logs) == {running.id}


def test_send_message_without_feed(tasks, activity, dispatcher) -> None:
    s = _session(tasks, activity, dispatcher)

    reply = s.send_message("  find rust  ")

    assert reply.content == "On it."
    assert len(reply.task_ids) == 2
    assert [(m.role, m.content) for m in s.messages] == [("user", "find rust"), ("assistant", "On it.")]
    assert s.sending is False
    assert s.send_message("   ") is None


def test_send_message_with_feed_does_not_duplicate(tasks, activity, dispatcher, feed) -> None:
    s = _session(tasks, activity, dispatcher, feed=feed)
    s.start()

    reply = s.send_message("find rust")

    assert [(m.role, m.content) for m in s.messages] == [("user", "find rust"), ("assistant", "On it.")]
    assert reply is s.messages[-1]
    # Dispatch created a parent and a child; both arrived live.
    assert len(s.tasks) == 2
    assert s.activity_logs
    s.stop()


def test_send_message_error_becomes_help_text(tasks, activity, entries) -> None:
    d = Dispatcher(tasks, activity, entries, FailingLLMClient(), rate_limiter=RateLimiter(5, 60.0))
    s = _session(tasks, activity, d)

    reply = s.send_message("research rust")

    assert reply.role == "assistant"
    assert reply.content.startswith("JAC hit an internal error.")
    assert s.sending is False


def test_live_task_notifications(tasks, activity, dispatcher, feed) -> None:
    notes = []
    s = _session(tasks, activity, dispatcher, feed=feed, notes=notes)
    s.start()

    ok = tasks.create_task(user_id=USER, type="search", intent="find rust", status=TaskStatus.RUNNING)
    bad = tasks.create_task(user_id=USER, type="search", intent="find go", status=TaskStatus.RUNNING)
    tasks.update_task(ok.id, status=TaskStatus.COMPLETED)
    tasks.update_task(bad.id, status=TaskStatus.FAILED, error="index missing")

    assert notes == [("success", "Task completed: find rust"), ("error", "Task failed: index missing")]
    assert {t.status for t in s.tasks} == {TaskStatus.COMPLETED, TaskStatus.FAILED}

    tasks.delete_task(ok.id)
    assert [t.id for t in s.tasks] == [bad.id]
    s.stop()


def test_load_task_logs(tasks, activity, dispatcher) -> None:
    t = tasks.create_task(user_id=USER, type="search", intent="a", status=TaskStatus.COMPLETED)
    AgentLogger(activity, t.id, USER, "jac-search-agent").info("search_memory")

    s = _session(tasks, activity, dispatcher)
    assert [e.step for e in s.load_task_logs(t.id)] == ["search_memory"]
    assert t.id in s.activity_logs
