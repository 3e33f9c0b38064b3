# src/jac_agents/connectors/console_connector.py

from __future__ import annotations

"""
Console connector: a line-based REPL in the main thread.

Slash commands go to the command registry; anything else is a message for
the JAC dispatcher. Task results arrive later as notifications printed by
console_notify (the views call it from the change feed).
"""

import contextlib
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message
from ..views.jac_session import JacMessage

logger = logging.getLogger(__name__)

PROMPT = ">>> You: "
EXIT_COMMANDS = ("/exit", "/quit")
NOTIFY_TAGS = {"success": "OK", "error": "!!", "info": "--"}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _echo_input(user_input: str) -> None:
    """Re-print the prompt line with a timestamp (TTY only)."""
    line = f"[{_ts_local()}] {PROMPT}{user_input}"
    if not sys.stdout.isatty():
        return
    with contextlib.suppress(OSError):
        sys.stdout.write("\033[1A\033[2K\r" + line + "\n")
        sys.stdout.flush()


def console_notify(level: str, text: str) -> None:
    _print_ts(f"[{NOTIFY_TAGS.get(level, level.upper())}] {text}")


def _run_command(state: AppState, line: str) -> str | None:
    try:
        with state.lock:
            return command_registry.handle(state, line, emit=_print_ts)
    except Exception:
        logger.exception("Command handler crashed: %s", line.split()[0])
        return "Internal error while handling a command."


def _format_reply(app_name: str, reply: JacMessage) -> str:
    ids = " ".join(t[:8] for t in reply.task_ids)
    suffix = f"  [task {ids}]" if ids else ""
    return f"<<< {app_name}: {reply.content}{suffix}"


def _send(state: AppState, text: str) -> str:
    try:
        reply = state.session.send_message(text)
    except RuntimeError as e:
        msg = friendly_llm_error_message(e)
        logger.info("LLM runtime error: %s", msg)
        return f"[LLM] {msg}"
    except Exception:
        logger.exception("Console dispatch crashed.")
        return "Internal error while dispatching."

    if reply is None:
        return "[JAC] Still working on the previous message."
    return _format_reply(str(state.settings.app_name).upper(), reply)


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (user=%s).", state.user_id)
    _print_ts("[CONSOLE] Talk to JAC. Use /help for commands, /exit to quit.")
    ticker = command_registry.handle(state, "/ticker")
    if ticker:
        _print_ts(ticker.replace("\n", " | ") + "\n")

    while True:
        try:
            user_input = input(PROMPT).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            logger.info("Console input closed, exiting.")
            break

        _echo_input(user_input)
        if not user_input:
            continue
        if user_input.lower() in EXIT_COMMANDS:
            break

        out = _run_command(state, user_input)
        if out is None:
            out = _send(state, user_input)
        _print_ts(out + "\n")

    logger.info("Console connector finished.")
