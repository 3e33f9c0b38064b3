# src/jac_agents/logging_setup.py

from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Iterable
from pathlib import Path

LOG_FILE_NAME = "jac.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Longest matching prefix wins; anything unlisted is third-party.
CONSOLE_THRESHOLDS: dict[str, int] = {
    "jac_agents.": logging.DEBUG,
    # Polling loops tick every few seconds.
    "jac_agents.tasks.task_scheduler": logging.WARNING,
    "jac_agents.cron.": logging.WARNING,
    "jac_agents.core.realtime": logging.WARNING,
    "py.warnings": logging.ERROR,
}
THIRD_PARTY_THRESHOLD = logging.ERROR

NOISY_LIBRARIES: tuple[str, ...] = ("httpx", "httpcore", "openai", "apscheduler")


class _ConsoleNoiseFilter(logging.Filter):
    """Per-logger minimum level for the interactive console."""

    def __init__(self, thresholds: dict[str, int] | None = None) -> None:
        super().__init__()
        table = thresholds if thresholds is not None else CONSOLE_THRESHOLDS
        self._prefixes = sorted(table.items(), key=lambda kv: len(kv[0]), reverse=True)

    def threshold_for(self, name: str) -> int:
        for prefix, level in self._prefixes:
            if name == prefix or name.startswith(prefix):
                return level
        return THIRD_PARTY_THRESHOLD

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.threshold_for(record.name)


def setup_logging(
    *,
    log_dir: str | Path = ".local/jac",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    quiet: Iterable[str] = NOISY_LIBRARIES,
) -> Path:
    """
    Console handler (filtered, for the REPL) plus a rotating file handler
    with everything. Returns the log file path.

    Call once, before the first log line.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.handlers.RotatingFileHandler(
        str(log_file),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    fh.setLevel(file_level)
    fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(fh)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return log_file
