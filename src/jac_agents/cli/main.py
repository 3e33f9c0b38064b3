# src/jac_agents/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs:
- the task scheduler and cron jobs on an asyncio loop in a background thread,
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state, start_views, stop_views
from ..config import get_settings
from ..connectors.console_connector import console_notify, run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..tasks.task_scheduler import run_task_scheduler

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Owns the asyncio loop thread that runs the scheduler and cron."""

    def __init__(self, state: AppState) -> None:
        self.state = state
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name="jac-background", daemon=True)

    def start(self) -> None:
        self._thread.start()
        self._ready.wait(timeout=10.0)

    def _run(self) -> None:
        try:
            asyncio.run(self._main())
        except Exception:
            logger.exception("Background loop crashed.")
        finally:
            self._ready.set()

    async def _main(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        settings = self.state.settings

        scheduler_task: asyncio.Task | None = None
        if settings.scheduler_enabled:
            scheduler_task = asyncio.create_task(
                run_task_scheduler(
                    self.state.runtime,
                    self.state.workers,
                    interval_seconds=settings.scheduler_interval_seconds,
                    batch_limit=settings.scheduler_batch_limit,
                    task_timeout_seconds=settings.task_timeout_seconds,
                ),
                name="jac-task-scheduler",
            )
            logger.info("Task scheduler started (every %.1fs).", settings.scheduler_interval_seconds)

        if settings.cron_enabled:
            self.state.cron.start()

        self._ready.set()
        try:
            await self._stop.wait()
        finally:
            if scheduler_task is not None:
                scheduler_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await scheduler_task
            self.state.cron.shutdown()

    def stop(self) -> None:
        loop, ev = self._loop, self._stop
        if loop is not None and ev is not None and not loop.is_closed():
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(ev.set)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)


def _shutdown(state: AppState) -> None:
    """Stop views and close stores; logs instead of raising."""
    try:
        stop_views(state)
    except Exception:
        logger.exception("Failed to stop views.")

    for store in (state.tasks, state.activity, state.entries, state.workspace, state.cron):
        try:
            store.close()
        except Exception:
            logger.debug("Store close failed.", exc_info=True)


def _console_level(settings) -> int:
    level = logging.getLevelName(str(getattr(settings, "log_level", "INFO")).upper())
    return level if isinstance(level, int) else logging.INFO


def _install_signal_handlers(done: threading.Event, *, handle_sigint: bool) -> None:
    def on_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        done.set()

    signals = [signal.SIGTERM] + ([signal.SIGINT] if handle_sigint else [])
    for sig in signals:
        try:
            signal.signal(sig, on_signal)
        except (ValueError, OSError):
            logger.debug("Cannot install handler for signal %s", sig)


def main() -> None:
    settings = get_settings()
    log_file = setup_logging(log_dir=settings.data_dir, console_level=_console_level(settings))
    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    state = create_initial_state(settings=settings)
    state.session.notify = console_notify
    state.code.notify = console_notify
    start_views(state)

    runner = BackgroundRunner(state)
    runner.start()

    done = threading.Event()
    # With the console on, Ctrl+C belongs to input() and ends the REPL.
    _install_signal_handlers(done, handle_sigint=not settings.console_enabled)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled. Running scheduler and cron only. Press Ctrl+C to stop.")
            done.wait()
    finally:
        runner.stop()
        runner.join(timeout=10.0)
        _shutdown(state)
        logger.info("Stopped.")


if __name__ == "__main__":
    main()
