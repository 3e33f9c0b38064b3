# src/jac_agents/agents/dispatcher.py

from __future__ import annotations

"""
JAC dispatcher: the boss agent.

Takes a user message, applies the guards (rate limit, stale sweep, concurrent
and daily caps), pulls keyword context from the brain, asks the LLM to route
the intent, then records a running parent task (jac-dispatcher) plus a
queued child task for the worker. It returns immediately; the scheduler
picks the child up.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..brain.context import build_brain_context
from ..brain.entry_store import EntryStore
from ..core.ports import LLMClient, TaskRepo
from ..core.rate_limit import RateLimiter
from ..llm.client import collect_text, parse_json_object
from ..tasks.activity_log import ActivityLogStore, AgentLogger
from ..tasks.task_models import ACTIVE_STATUSES, TaskStatus, TaskType
from .registry import CODE_AGENT, DISPATCHER_AGENT, GENERAL_AGENT, INTENT_AGENT_MAP, ROUTABLE_INTENTS

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE = "I'm on it."
PARENT_CONTEXT_CHARS = 1000
CHILD_CONTEXT_CHARS = 2000

ROUTER_SYSTEM_PROMPT = """You are JAC, a personal AI agent dispatcher. The user sends you a message and you decide what to do with it.

Your job:
- Parse the user's intent
- Pick the right agent to handle it
- Write a brief, confident response acknowledging what you're doing

Intent routing:
- "research" -> jac-research-agent: User wants to learn about something, wants info synthesized
- "save" -> jac-save-agent: User wants to save/remember/note something to their brain
- "search" -> jac-search-agent: User wants to find something in their brain
- "report" -> jac-research-agent: User wants a comprehensive report or analysis
- "general" -> assistant-chat: General conversation, questions about their data, simple requests

Reply with ONLY a JSON object (tool: route_intent) with these keys:
  "intent": one of research | save | search | report | general
  "summary": a brief 1-sentence summary of what the user wants
  "agentType": jac-research-agent | jac-save-agent | jac-search-agent | assistant-chat
  "extractedQuery": the core query/content, stripped of intent words
  "response": a brief, natural acknowledgement (1-2 sentences)
{brain_context}
Be concise. Be confident. Don't ask questions, just act."""


class DispatchError(Exception):
    """A refused dispatch, carrying an HTTP-style status code."""

    def __init__(self, status_code: int, message: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = int(status_code)
        self.message = message
        self.extra: dict[str, Any] = dict(extra or {})


@dataclass(slots=True, frozen=True)
class DispatchResult:
    response: str
    task_id: str
    intent: str
    agent_type: str
    status: str  # "completed" (general) | "dispatched"
    child_task_id: str | None = None
    task_ids: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class RoutedIntent:
    intent: str
    summary: str
    agent_type: str
    extracted_query: str
    response: str


def parse_route(raw: dict[str, Any] | None, message: str) -> RoutedIntent:
    """Validate a router reply; every missing/invalid field falls back."""
    data = raw or {}

    intent = str(data.get("intent") or "").strip().lower()
    if intent not in ROUTABLE_INTENTS:
        intent = "general"

    summary = str(data.get("summary") or "").strip() or message[:100]

    agent_type = str(data.get("agentType") or "").strip()
    if agent_type not in INTENT_AGENT_MAP.values() or agent_type == CODE_AGENT:
        agent_type = INTENT_AGENT_MAP.get(intent, GENERAL_AGENT)

    extracted = str(data.get("extractedQuery") or "").strip() or message
    response = str(data.get("response") or "").strip() or DEFAULT_RESPONSE
    return RoutedIntent(intent, summary, agent_type, extracted, response)


def utc_midnight_ts(now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0).timestamp()


class Dispatcher:
    def __init__(
        self,
        tasks: TaskRepo,
        activity: ActivityLogStore,
        entries: EntryStore,
        llm: LLMClient,
        *,
        rate_limiter: RateLimiter | None = None,
        max_concurrent: int = 10,
        daily_limit: int = 200,
        stale_after_seconds: float = 600.0,
    ) -> None:
        self.tasks = tasks
        self.activity = activity
        self.entries = entries
        self.llm = llm
        self.rate_limiter = rate_limiter or RateLimiter(50, 60.0)
        self.max_concurrent = int(max_concurrent)
        self.daily_limit = int(daily_limit)
        self.stale_after_seconds = float(stale_after_seconds)

    def _route(self, message: str, brain_context: str) -> RoutedIntent:
        ctx_block = f"\nUser's brain context (relevant entries):\n{brain_context}\n" if brain_context else ""
        system_prompt = ROUTER_SYSTEM_PROMPT.replace("{brain_context}", ctx_block)
        text = collect_text(self.llm, [{"role": "user", "content": message}], system_prompt)
        parsed = parse_json_object(text)
        if parsed is None:
            logger.info("Router reply was not JSON; falling back to general")
        return parse_route(parsed, message)

    def dispatch(
        self,
        user_id: str,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        task_type: str | None = None,
        source: str = "web",
    ) -> DispatchResult:
        if not user_id:
            raise DispatchError(401, "Unauthorized")

        message = (message or "").strip()
        if not message:
            raise DispatchError(400, "Message is required")

        if not self.rate_limiter.check(user_id).allowed:
            raise DispatchError(429, "Rate limit exceeded")

        # Stale tasks would otherwise count against the concurrent guard.
        self.tasks.fail_stale_tasks(user_id, older_than_seconds=self.stale_after_seconds)

        running = self.tasks.count_tasks(user_id, statuses=ACTIVE_STATUSES)
        if running >= self.max_concurrent:
            raise DispatchError(
                429,
                "Too many tasks running. Please wait for some to complete.",
                extra={"running": running},
            )

        daily = self.tasks.count_tasks(user_id, since=utc_midnight_ts())
        if daily >= self.daily_limit:
            raise DispatchError(429, "Daily task limit reached. Try again tomorrow.", extra={"dailyCount": daily})

        brain_context = ""
        try:
            brain_context = build_brain_context(self.entries, user_id, message)
        except Exception:
            logger.warning("Brain context search failed (non-blocking)", exc_info=True)

        if task_type == TaskType.CODE:
            route = RoutedIntent(
                intent="code",
                summary=message[:100],
                agent_type=CODE_AGENT,
                extracted_query=message,
                response="On it. Planning the code change now.",
            )
        else:
            try:
                route = self._route(message, brain_context)
            except Exception as e:
                logger.exception("Intent routing failed user=%s", user_id)
                raise DispatchError(500, str(e) or "Intent routing failed") from e

        parent = self.tasks.create_task(
            user_id=user_id,
            type=route.intent,
            status=TaskStatus.RUNNING,
            intent=route.summary,
            agent=DISPATCHER_AGENT,
            input={
                "message": message,
                "brainContext": brain_context[:PARENT_CONTEXT_CHARS],
                "source": source or "web",
                "context": dict(context or {}),
            },
        )

        log = AgentLogger(self.activity, parent.id, user_id, DISPATCHER_AGENT)
        log.info(
            "intent_parsed",
            {
                "intent": route.intent,
                "agentType": route.agent_type,
                "summary": route.summary,
                "extractedQuery": route.extracted_query,
                "hasBrainContext": bool(brain_context),
            },
        )

        child_id: str | None = None
        if route.intent != "general":
            child = self.tasks.create_task(
                user_id=user_id,
                type=route.intent,
                status=TaskStatus.QUEUED,
                intent=route.summary,
                agent=route.agent_type,
                parent_task_id=parent.id,
                input={
                    "query": route.extracted_query,
                    "originalMessage": message,
                    "brainContext": brain_context[:CHILD_CONTEXT_CHARS],
                    "context": dict(context or {}),
                    "source": source or "web",
                },
            )
            child_id = child.id
            log.info("worker_dispatched", {"agentType": route.agent_type, "childTaskId": child_id})

        task_ids = [parent.id] + ([child_id] if child_id else [])
        self.tasks.add_message(user_id=user_id, role="user", content=message, task_ids=task_ids)
        self.tasks.add_message(user_id=user_id, role="assistant", content=route.response, task_ids=task_ids)

        if route.intent == "general":
            self.tasks.update_task(parent.id, status=TaskStatus.COMPLETED, only_from=(TaskStatus.RUNNING,))

        logger.info(
            "Dispatched intent=%s agent=%s parent=%s child=%s",
            route.intent,
            route.agent_type,
            parent.id,
            child_id,
        )
        return DispatchResult(
            response=route.response,
            task_id=parent.id,
            child_task_id=child_id,
            intent=route.intent,
            agent_type=route.agent_type,
            status="completed" if route.intent == "general" else "dispatched",
            task_ids=task_ids,
        )

    async def adispatch(self, user_id: str, message: str, **kwargs: Any) -> DispatchResult:
        """dispatch() off the event loop (the router call blocks on the LLM)."""
        return await asyncio.to_thread(self.dispatch, user_id, message, **kwargs)
