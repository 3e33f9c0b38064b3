# src/jac_agents/llm/offline.py

from __future__ import annotations

import json
import re
from collections.abc import Iterable

from ..core.ports import ChatMessage

_SAVE = re.compile(r"^\s*(?:please\s+)?(?:save|remember|note|store|jot down)\b[:\s]*", re.IGNORECASE)
_SEARCH = re.compile(
    r"^\s*(?:please\s+)?(?:search|find|look up|lookup)\b(?:\s+(?:my\s+brain|my\s+notes|my\s+entries)\s+)?"
    r"(?:\s*for\b)?[:\s]*",
    re.IGNORECASE,
)
_RESEARCH = re.compile(r"^\s*(?:please\s+)?(?:research|investigate|dig into)\b[:\s]*", re.IGNORECASE)
_REPORT = re.compile(r"^\s*(?:please\s+)?(?:report on|write a report on|summari[sz]e)\b[:\s]*", re.IGNORECASE)

_ACKS = {
    "save": "Saving that to your brain.",
    "search": "Searching your brain now.",
    "research": "On it. Researching that now.",
    "report": "Putting a report together.",
}


def route_offline(message: str) -> dict[str, str]:
    """Keyword intent routing in the same JSON shape the dispatcher asks an LLM for."""
    text = (message or "").strip()
    for intent, pattern in (("save", _SAVE), ("search", _SEARCH), ("research", _RESEARCH), ("report", _REPORT)):
        m = pattern.match(text)
        if m:
            query = text[m.end():].strip() or text
            return {
                "intent": intent,
                "summary": f"{intent.capitalize()}: {query[:80]}",
                "extractedQuery": query,
                "response": _ACKS[intent],
            }
    return {
        "intent": "general",
        "summary": text[:100],
        "extractedQuery": text,
        "response": (
            "Offline demo mode: no external LLM is configured.\n"
            "Set JAC_OPENROUTER_API_KEY (and JAC_LLM_MODELS) to enable real responses.\n"
            "Try: save <text>, search <words>, research <topic>."
        ),
    }


class OfflineLLMClient:
    """
    Offline deterministic LLM client used when no external API is configured.

    Behavior:
    - Dispatcher routing prompts -> keyword routing JSON
    - Research synthesis prompts -> brief stitched from the provided context
    - Code planning prompts -> a generic step list
    - Anything else -> a friendly offline notice
    """

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        sp = (system_prompt or "").lower()

        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        if "route_intent" in sp:
            yield json.dumps(route_offline(user_text), ensure_ascii=False)
            return

        if "research brief" in sp:
            yield "Offline brief (no external LLM configured).\n\n" + user_text.strip()
            return

        if "implementation plan" in sp:
            yield (
                "1. Read the relevant files in the project tree.\n"
                "2. Make the change on the working branch.\n"
                "3. Open a pull request for review."
            )
            return

        yield (
            "Offline demo mode: no external LLM is configured.\n"
            "Set JAC_OPENROUTER_API_KEY (and JAC_LLM_MODELS) to enable real responses.\n\n"
            f"You said: {user_text}"
        )
