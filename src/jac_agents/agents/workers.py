# src/jac_agents/agents/workers.py

from __future__ import annotations

"""
Worker agents.

The scheduler claims a queued task and hands it to the worker registered for
task.agent. The scheduler owns the task lifecycle (running -> completed /
failed, parent roll-up, task_started/task_completed/task_failed logs); a
worker only does its steps and returns the output dict.

Workers call ctx.checkpoint() between steps so the kill switch takes effect
at the next step boundary.
"""

import asyncio
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Any

from ..brain.context import extract_search_words
from ..brain.entry_store import Entry, EntryStore
from ..brain.save import SaveService
from ..core.ports import LLMClient
from ..llm.client import collect_text
from ..tasks.activity_log import ActivityLogStore, AgentLogger
from ..tasks.task_models import AgentTask, TaskStatus
from ..tasks.task_store import AgentTaskStore
from ..workspace.file_tree import build_file_tree, render_tree
from ..workspace.workspace_store import SessionStatus, WorkspaceStore
from .registry import CODE_AGENT, RESEARCH_AGENT, SAVE_AGENT, SEARCH_AGENT

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
MAX_SEARCH_RESULTS = 10
BRIEF_CHARS = 5000


class TaskCancelled(Exception):
    """Raised at a checkpoint once the task row has been cancelled."""

    def __init__(self, task_id: str, step: str | None = None) -> None:
        super().__init__(f"Task {task_id} cancelled" + (f" before {step}" if step else ""))
        self.task_id = task_id
        self.step = step


@dataclass(slots=True)
class AgentRuntime:
    """Everything a worker may touch."""

    tasks: AgentTaskStore
    activity: ActivityLogStore
    entries: EntryStore
    saver: SaveService
    workspace: WorkspaceStore
    llm: LLMClient


@dataclass(slots=True)
class WorkerContext:
    runtime: AgentRuntime
    task: AgentTask
    log: AgentLogger

    @property
    def query(self) -> str:
        q = self.task.input.get("query") or self.task.input.get("originalMessage") or self.task.intent
        return str(q or "").strip()

    @property
    def context(self) -> dict[str, Any]:
        ctx = self.task.input.get("context")
        return ctx if isinstance(ctx, dict) else {}

    def checkpoint(self, step: str | None = None) -> None:
        current = self.runtime.tasks.get_task(self.task.id)
        if current is None or current.status == TaskStatus.CANCELLED:
            raise TaskCancelled(self.task.id, step)

    def reply(self, content: str) -> None:
        """Append an assistant message to the user's JAC conversation."""
        try:
            self.runtime.tasks.add_message(
                user_id=self.task.user_id,
                role="assistant",
                content=content,
                task_ids=[t for t in (self.task.parent_task_id, self.task.id) if t],
            )
        except Exception:
            logger.exception("Failed to store worker reply task=%s", self.task.id)

    async def ask_llm(self, system_prompt: str, user_content: str) -> str:
        return await asyncio.to_thread(
            collect_text,
            self.runtime.llm,
            [{"role": "user", "content": user_content}],
            system_prompt,
        )


def _result_row(e: Entry) -> dict[str, Any]:
    return {"id": e.id, "title": e.title or "Untitled", "snippet": e.content[:SNIPPET_CHARS]}


def _search_brain(entries: EntryStore, user_id: str, query: str) -> list[Entry]:
    words = extract_search_words(query) or [w for w in query.lower().split() if w][:5]
    return entries.keyword_search(user_id, words, limit=MAX_SEARCH_RESULTS)


class SaveAgent:
    agent = SAVE_AGENT

    async def run(self, ctx: WorkerContext) -> dict[str, Any]:
        content = ctx.query
        if not content:
            raise ValueError("Nothing to save")

        with ctx.log.step("smart_save", {"length": len(content)}) as step:
            result = await asyncio.to_thread(
                ctx.runtime.saver.save,
                ctx.task.user_id,
                content,
                source=str(ctx.task.input.get("source") or "jac"),
            )
            step.detail["queued"] = result.queued

        entry = result.entry
        ctx.reply(result.message)
        return {
            "entryId": entry.id if entry else None,
            "entryTitle": entry.title if entry else None,
            "entryType": entry.content_type if entry else None,
            "queued": result.queued,
            "brief": result.message,
        }


class SearchAgent:
    agent = SEARCH_AGENT

    async def run(self, ctx: WorkerContext) -> dict[str, Any]:
        query = ctx.query
        with ctx.log.step("search_memory", {"query": query}) as step:
            hits = _search_brain(ctx.runtime.entries, ctx.task.user_id, query)
            step.detail["resultCount"] = len(hits)

        results = [_result_row(e) for e in hits[:MAX_SEARCH_RESULTS]]
        if results:
            lines = "\n".join(f"- {r['title']}: {r['snippet'][:80]}" for r in results[:5])
            brief = f"Found {len(results)} results for: \"{query[:60]}\"\n{lines}"
        else:
            brief = f"No matching entries for: \"{query[:60]}\""

        ctx.reply(brief)
        return {"results": results, "count": len(results), "brief": brief}


RESEARCH_SYSTEM_PROMPT = """You are a research assistant. Write a clear, actionable research brief.

- Use the user's own brain entries below as sources where relevant
- Structure the research brief with short sections and bullet points
- Call out open questions and next steps
- Be concise (300-600 words)"""


class ResearchAgent:
    agent = RESEARCH_AGENT

    async def run(self, ctx: WorkerContext) -> dict[str, Any]:
        query = ctx.query
        brain_context = str(ctx.task.input.get("brainContext") or "")

        with ctx.log.step("brain_search", {"query": query}) as step:
            hits = _search_brain(ctx.runtime.entries, ctx.task.user_id, query)
            step.detail["resultCount"] = len(hits)
        sources = [{"id": e.id, "title": e.title or "Untitled"} for e in hits]

        ctx.checkpoint("ai_synthesis")

        source_text = "\n".join(f"[{e.title or 'Untitled'}]: {e.content[:500]}" for e in hits) or brain_context
        prompt = f"Research query: {query}\n\nSources from the user's brain:\n{source_text or '(none)'}"
        with ctx.log.step("ai_synthesis", {"sourceCount": len(sources)}) as step:
            brief = await ctx.ask_llm(RESEARCH_SYSTEM_PROMPT, prompt)
            if not brief:
                raise RuntimeError("Research synthesis returned no content")
            step.detail["briefLength"] = len(brief)

        ctx.checkpoint("save_to_brain")

        brain_entry_id = None
        with ctx.log.step("save_to_brain") as step:
            result = await asyncio.to_thread(
                ctx.runtime.saver.save,
                ctx.task.user_id,
                f"# Research: {query}\n\n{brief}",
                source="jac-research",
            )
            brain_entry_id = result.entry.id if result.entry else None
            step.detail["entryId"] = brain_entry_id

        try:
            ctx.runtime.tasks.add_reflection(
                user_id=ctx.task.user_id,
                task_type=ctx.task.type.value,
                intent=ctx.task.intent,
                summary=f"Researched \"{query[:60]}\": {brief[:200]}",
                connections=[s["id"] for s in sources] or None,
            )
        except Exception:
            logger.exception("Failed to store reflection task=%s", ctx.task.id)

        ctx.reply(f"Research complete: {query}\n\n{brief[:500]}" + ("\n\nSaved to brain." if brain_entry_id else ""))
        return {"brief": brief[:BRIEF_CHARS], "sources": sources, "brainEntryId": brain_entry_id}


CODE_SYSTEM_PROMPT = """You are a senior engineer. Write a short implementation plan for the request.

- Name the files to read or change (use paths from the project tree)
- One numbered step per line
- No code, just the plan"""

_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def branch_slug(text: str, max_len: int = 40) -> str:
    slug = _SLUG_CHARS.sub("-", (text or "").lower()).strip("-")
    return slug[:max_len].rstrip("-") or "code-change"


class CodeAgent:
    """
    Plans a change against a registered code project.

    Repository writes (commit, push, PR) are out of scope here: the agent
    records a session on a fresh jac/<slug>-<hex> branch with the plan.
    """

    agent = CODE_AGENT

    async def run(self, ctx: WorkerContext) -> dict[str, Any]:
        rt = ctx.runtime
        query = ctx.query
        project_id = ctx.context.get("projectId")
        if not project_id:
            raise ValueError("projectId is required for code tasks")

        with ctx.log.step("resolve_project", {"projectId": project_id}) as step:
            project = rt.workspace.get_project(str(project_id))
            if project is None or not project.is_active or project.user_id != ctx.task.user_id:
                raise ValueError(f"Project {project_id} not found")
            step.detail["repo"] = project.repo_full_name

        branch = f"jac/{branch_slug(query)}-{secrets.token_hex(4)}"
        session = rt.workspace.create_session(
            user_id=ctx.task.user_id,
            project_id=project.id,
            branch_name=branch,
            task_id=ctx.task.id,
            intent=query,
        )

        try:
            ctx.checkpoint("create_branch")
            ctx.log.info("create_branch", {"branchName": branch, "baseBranch": project.default_branch})

            ctx.checkpoint("read_file")
            with ctx.log.step("read_file", {"source": "cached_tree"}) as step:
                tree_lines = render_tree(build_file_tree(project.file_tree), max_lines=300)
                step.detail["fileCount"] = len(project.file_tree)

            ctx.checkpoint("plan")
            prompt = (
                f"Request: {query}\n\nRepository: {project.repo_full_name} "
                f"(base branch {project.default_branch})\n\nProject tree:\n"
                + ("\n".join(tree_lines) or "(tree not synced)")
            )
            with ctx.log.step("plan", {"query": query, "fileCount": len(project.file_tree)}) as step:
                plan = await ctx.ask_llm(CODE_SYSTEM_PROMPT, prompt)
                if not plan:
                    raise RuntimeError("Planner returned no content")
                step.detail["planLength"] = len(plan)

            ctx.checkpoint("save_session")
        except BaseException:
            rt.workspace.update_session(session.id, status=SessionStatus.FAILED)
            raise

        rt.workspace.update_session(session.id, status=SessionStatus.COMPLETED)
        ctx.reply(f"Code plan ready: {query}\n\nBranch: {branch}\n\n{plan[:800]}")
        return {
            "sessionId": session.id,
            "branch": branch,
            "plan": plan,
            "fileCount": len(project.file_tree),
            "prUrl": None,
            "brief": plan[:200],
        }


def default_workers() -> dict[str, Any]:
    return {w.agent: w for w in (SaveAgent(), SearchAgent(), ResearchAgent(), CodeAgent())}
