# tests/test_workers.py

from __future__ import annotations

import pytest

from jac_agents.agents.registry import CODE_AGENT, RESEARCH_AGENT, SAVE_AGENT, SEARCH_AGENT
from jac_agents.agents.workers import CodeAgent, ResearchAgent, SaveAgent, SearchAgent, branch_slug, default_workers
from jac_agents.tasks.task_models import LogStatus, TaskStatus
from jac_agents.tasks.task_scheduler import execute_task
from jac_agents.workspace.workspace_store import SessionStatus

from .conftest import USER
from .fakes import FakeLLMClient


def _running(tasks, agent, *, type="search", **input):
    parent = tasks.create_task(user_id=USER, type=type, intent="parent", agent="jac-dispatcher", status=TaskStatus.RUNNING)
    return tasks.create_task(
        user_id=USER,
        type=type,
        intent=input.get("query") or "task",
        agent=agent,
        status=TaskStatus.RUNNING,
        parent_task_id=parent.id,
        input=input,
    )


def _log(activity, task_id):
    return [(e.step, e.status) for e in activity.list_for_task(task_id)]


def test_default_workers_cover_every_worker_agent() -> None:
    assert set(default_workers()) == {SAVE_AGENT, SEARCH_AGENT, RESEARCH_AGENT, CODE_AGENT}


@pytest.mark.asyncio
async def test_save_agent_saves_and_replies(runtime, tasks, activity, entries) -> None:
    task = _running(tasks, SAVE_AGENT, type="save", query="Buy milk #groceries", source="web")

    status = await execute_task(runtime, SaveAgent(), task)

    assert status == TaskStatus.COMPLETED
    out = tasks.get_task(task.id).output
    assert out["queued"] is False
    assert out["entryType"] == "note"
    saved = entries.get_entry(out["entryId"])
    assert saved.tags == ["groceries"]
    assert saved.source == "web"
    assert ("smart_save", LogStatus.COMPLETED) in _log(activity, task.id)
    assert tasks.list_messages(USER)[-1].content.startswith("Saved: Buy milk")


@pytest.mark.asyncio
async def test_search_agent_reports_hits(runtime, tasks, entries) -> None:
    entries.add_entry(user_id=USER, content="Borrow checker tips", title="Rust notes")
    entries.add_entry(user_id=USER, content="Sourdough starter", title="Baking")
    task = _running(tasks, SEARCH_AGENT, query="rust")

    await execute_task(runtime, SearchAgent(), task)

    out = tasks.get_task(task.id).output
    assert out["count"] == 1
    assert out["results"][0]["title"] == "Rust notes"
    assert out["brief"].startswith('Found 1 results for: "rust"')


@pytest.mark.asyncio
async def test_search_agent_finds_tag_only_and_skips_archived(runtime, tasks, entries) -> None:
    entries.add_entry(user_id=USER, content="Ownership and lifetimes", title="Language notes", tags=["rust"])
    old = entries.add_entry(user_id=USER, content="Old rust draft", title="Draft")
    entries.archive_entry(old.id)
    task = _running(tasks, SEARCH_AGENT, query="rust")

    await execute_task(runtime, SearchAgent(), task)

    out = tasks.get_task(task.id).output
    assert [r["title"] for r in out["results"]] == ["Language notes"]


@pytest.mark.asyncio
async def test_search_agent_without_hits(runtime, tasks) -> None:
    task = _running(tasks, SEARCH_AGENT, query="quantum")
    await execute_task(runtime, SearchAgent(), task)
    assert tasks.get_task(task.id).output["count"] == 0


@pytest.mark.asyncio
async def test_research_agent_synthesises_and_saves(runtime, tasks, activity, entries) -> None:
    source = entries.add_entry(user_id=USER, content="Tokio runtime internals", title="Async Rust")
    runtime.llm = FakeLLMClient("## Brief\n- tokio is an async runtime")
    task = _running(tasks, RESEARCH_AGENT, type="research", query="tokio")

    status = await execute_task(runtime, ResearchAgent(), task)

    assert status == TaskStatus.COMPLETED
    out = tasks.get_task(task.id).output
    assert out["brief"].startswith("## Brief")
    assert out["sources"] == [{"id": source.id, "title": "Async Rust"}]
    saved = entries.get_entry(out["brainEntryId"])
    assert saved.content.startswith("# Research: tokio")

    steps = [s for s, st in _log(activity, task.id) if st == LogStatus.COMPLETED]
    assert steps[1:4] == ["brain_search", "ai_synthesis", "save_to_brain"]

    refs = tasks.list_reflections(USER)
    assert refs[0].connections == [source.id]


@pytest.mark.asyncio
async def test_research_cancelled_during_synthesis_saves_nothing(runtime, tasks, entries) -> None:
    def cancel_then_answer(_system: str, _user: str) -> str:
        tasks.cancel_tasks(USER)
        return "late brief"

    runtime.llm = FakeLLMClient(responder=cancel_then_answer)
    task = _running(tasks, RESEARCH_AGENT, type="research", query="tokio")

    status = await execute_task(runtime, ResearchAgent(), task)

    assert status == TaskStatus.CANCELLED
    assert tasks.get_task(task.id).status == TaskStatus.CANCELLED
    assert entries.count_entries(USER) == 0


@pytest.mark.asyncio
async def test_research_empty_synthesis_fails(runtime, tasks) -> None:
    runtime.llm = FakeLLMClient("")
    task = _running(tasks, RESEARCH_AGENT, type="research", query="tokio")

    assert await execute_task(runtime, ResearchAgent(), task) == TaskStatus.FAILED
    assert tasks.get_task(task.id).error == "Research synthesis returned no content"


@pytest.mark.asyncio
async def test_code_agent_plans_on_a_fresh_branch(runtime, tasks, workspace, activity) -> None:
    project = workspace.add_project(user_id=USER, repo_full_name="me/app")
    workspace.update_file_tree(project.id, ["src/main.py", "README.md"])
    runtime.llm = FakeLLMClient("1. Edit src/main.py")
    task = _running(tasks, CODE_AGENT, type="code", query="Add a health endpoint", context={"projectId": project.id})

    status = await execute_task(runtime, CodeAgent(), task)

    assert status == TaskStatus.COMPLETED
    out = tasks.get_task(task.id).output
    assert out["branch"].startswith("jac/add-a-health-endpoint-")
    assert out["fileCount"] == 2
    assert out["prUrl"] is None
    session = workspace.get_session(out["sessionId"])
    assert session.status == SessionStatus.COMPLETED
    assert session.task_id == task.id

    prompt = runtime.llm.calls[0][0][0]["content"]
    assert "src/" in prompt
    assert "main.py" in prompt

    steps = [s for s, st in _log(activity, task.id) if st == LogStatus.COMPLETED]
    assert "resolve_project" in steps
    assert "create_branch" in steps
    assert "plan" in steps


@pytest.mark.asyncio
async def test_code_agent_requires_known_project(runtime, tasks) -> None:
    task = _running(tasks, CODE_AGENT, type="code", query="x", context={"projectId": "nope"})
    assert await execute_task(runtime, CodeAgent(), task) == TaskStatus.FAILED
    assert tasks.get_task(task.id).error == "Project nope not found"

    task = _running(tasks, CODE_AGENT, type="code", query="x")
    assert await execute_task(runtime, CodeAgent(), task) == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_code_agent_failure_marks_session_failed(runtime, tasks, workspace) -> None:
    project = workspace.add_project(user_id=USER, repo_full_name="me/app")
    runtime.llm = FakeLLMClient("")
    task = _running(tasks, CODE_AGENT, type="code", query="x", context={"projectId": project.id})

    await execute_task(runtime, CodeAgent(), task)

    session = workspace.latest_session(USER)
    assert session.status == SessionStatus.FAILED


def test_branch_slug() -> None:
    assert branch_slug("Fix: the Login bug!!") == "fix-the-login-bug"
    assert branch_slug("???") == "code-change"
    assert len(branch_slug("x" * 100)) == 40
