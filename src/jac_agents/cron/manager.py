# src/jac_agents/cron/manager.py

from __future__ import annotations

"""
Cron jobs: housekeeping that runs on a crontab schedule.

Jobs are registered in code; their active flag and run history live in
SQLite so a job switched off stays off across restarts. Scheduling is
APScheduler's AsyncIOScheduler, created lazily in start() so it binds to
the running loop.
"""

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core.db import SQLiteStore

logger = logging.getLogger(__name__)

JOBS_TABLE = "cron_jobs"
RUNS_TABLE = "cron_job_runs"

RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"

JobFunc = Callable[[], Any]


@dataclass(slots=True, frozen=True)
class CronJob:
    jobid: int
    jobname: str
    schedule: str
    command: str
    active: bool
    last_run_status: str | None = None
    last_run_at: float | None = None
    last_run_duration: float | None = None  # seconds


@dataclass(slots=True)
class _Registered:
    func: JobFunc
    trigger: CronTrigger


class CronManager(SQLiteStore):
    def __init__(self, db_path: str | Path = "jac.sqlite3", *, misfire_grace_time: int | None = 60) -> None:
        super().__init__(db_path)
        self._jobs: dict[str, _Registered] = {}
        self._scheduler: AsyncIOScheduler | None = None
        self._misfire_grace_time = misfire_grace_time

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {JOBS_TABLE} (
                    jobid INTEGER PRIMARY KEY AUTOINCREMENT,
                    jobname TEXT NOT NULL UNIQUE,
                    schedule TEXT NOT NULL,
                    command TEXT NOT NULL DEFAULT '',
                    active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {RUNS_TABLE} (
                    runid INTEGER PRIMARY KEY AUTOINCREMENT,
                    jobid INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    started_at REAL NOT NULL,
                    finished_at REAL,
                    duration_ms INTEGER,
                    error TEXT
                )
                """
            )
            self._add_missing_columns(cur, RUNS_TABLE, {"error": "TEXT"})
            cur.execute(f"CREATE INDEX IF NOT EXISTS idx_cron_runs_job ON {RUNS_TABLE}(jobid, started_at)")
            conn.commit()
        finally:
            conn.close()

    # ---- registry ----

    def register(self, name: str, schedule: str, func: JobFunc, command: str = "") -> CronJob:
        """
        Register (or re-register) a job. Raises ValueError for a bad crontab.

        A persisted active flag wins over the default, so a toggled-off job
        stays off after a restart.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("job name is required")
        trigger = CronTrigger.from_crontab(schedule, timezone=timezone.utc)

        conn = self._get_conn()
        try:
            conn.execute(
                f"""
                INSERT INTO {JOBS_TABLE}(jobname, schedule, command, active)
                VALUES (?, ?, ?, 1)
                ON CONFLICT(jobname) DO UPDATE SET
                    schedule = excluded.schedule,
                    command = excluded.command
                """,
                (name, schedule, command or ""),
            )
            conn.commit()
        finally:
            conn.close()

        self._jobs[name] = _Registered(func=func, trigger=trigger)
        if self._scheduler is not None:
            self._schedule(name)
        logger.info("Registered cron job: %s (%s)", name, schedule)
        return self._get_job(name)

    def _get_job(self, name: str) -> CronJob:
        jobs = [j for j in self.get_cron_status() if j.jobname == name]
        if not jobs:
            raise KeyError(name)
        return jobs[0]

    def _is_active(self, name: str) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT active FROM {JOBS_TABLE} WHERE jobname = ?", (name,)).fetchone()
            return bool(row["active"]) if row else False
        finally:
            conn.close()

    def get_cron_status(self) -> list[CronJob]:
        """Registered jobs with their latest run, sorted by name."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"""
                SELECT j.jobid, j.jobname, j.schedule, j.command, j.active,
                       r.status AS last_run_status,
                       r.started_at AS last_run_at,
                       r.duration_ms AS last_run_duration_ms
                FROM {JOBS_TABLE} j
                LEFT JOIN {RUNS_TABLE} r ON r.runid = (
                    SELECT runid FROM {RUNS_TABLE}
                    WHERE jobid = j.jobid
                    ORDER BY started_at DESC, runid DESC
                    LIMIT 1
                )
                ORDER BY j.jobname
                """
            )
            rows = cur.fetchall()
        finally:
            conn.close()

        return [self._row_to_job(r) for r in rows if r["jobname"] in self._jobs]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> CronJob:
        duration_ms = row["last_run_duration_ms"]
        return CronJob(
            jobid=int(row["jobid"]),
            jobname=str(row["jobname"]),
            schedule=str(row["schedule"]),
            command=str(row["command"] or ""),
            active=bool(row["active"]),
            last_run_status=row["last_run_status"],
            last_run_at=float(row["last_run_at"]) if row["last_run_at"] is not None else None,
            last_run_duration=(duration_ms / 1000.0) if duration_ms is not None else None,
        )

    def toggle(self, name: str, enabled: bool) -> bool:
        if name not in self._jobs:
            return False
        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE {JOBS_TABLE} SET active = ? WHERE jobname = ?", (1 if enabled else 0, name))
            conn.commit()
            if cur.rowcount != 1:
                return False
        finally:
            conn.close()

        if self._scheduler is not None and self._scheduler.get_job(name) is not None:
            if enabled:
                self._scheduler.resume_job(name)
            else:
                self._scheduler.pause_job(name)
        logger.info("Cron job %s -> %s", name, "active" if enabled else "paused")
        return True

    # ---- execution ----

    def _record_run(self, name: str, status: str, started_at: float, duration_ms: int, error: str | None) -> None:
        conn = self._get_conn()
        try:
            row = conn.execute(f"SELECT jobid FROM {JOBS_TABLE} WHERE jobname = ?", (name,)).fetchone()
            if row is None:
                return
            conn.execute(
                f"""
                INSERT INTO {RUNS_TABLE}(jobid, status, started_at, finished_at, duration_ms, error)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (int(row["jobid"]), status, started_at, time.time(), duration_ms, error),
            )
            conn.commit()
        finally:
            conn.close()

    def _run(self, name: str) -> bool:
        job = self._jobs.get(name)
        if job is None:
            return False

        started_at = time.time()
        t0 = time.monotonic()
        status, error = RUN_SUCCEEDED, None
        try:
            job.func()
        except Exception as e:
            status, error = RUN_FAILED, (str(e) or e.__class__.__name__)[:500]
            logger.error("Cron job %s failed: %s", name, e, exc_info=True)

        duration_ms = int((time.monotonic() - t0) * 1000)
        try:
            self._record_run(name, status, started_at, duration_ms, error)
        except sqlite3.Error:
            logger.exception("Failed to record cron run job=%s", name)
        return status == RUN_SUCCEEDED

    def run_now(self, name: str) -> bool:
        """Run a job once, outside its schedule. Unknown jobs raise KeyError."""
        if name not in self._jobs:
            raise KeyError(name)
        return self._run(name)

    # ---- scheduler ----

    def _schedule(self, name: str) -> None:
        assert self._scheduler is not None
        job = self._jobs[name]
        kwargs: dict[str, Any] = {}
        if not self._is_active(name):
            kwargs["next_run_time"] = None  # added paused
        self._scheduler.add_job(
            self._run,
            trigger=job.trigger,
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            misfire_grace_time=self._misfire_grace_time,
            coalesce=True,
            **kwargs,
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start scheduling. Call from inside the event loop."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for name in self._jobs:
            self._schedule(name)
        self._scheduler.start()
        logger.info("Cron scheduler started with %d job(s)", len(self._jobs))

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        try:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
        finally:
            self._scheduler = None
        logger.info("Cron scheduler stopped")


STALE_SWEEP_JOB = "stale-task-sweeper"
QUEUE_FLUSH_JOB = "offline-queue-flush"
TICKER_REMINDERS_JOB = "ticker-reminders"
RATE_LIMIT_CLEANUP_JOB = "rate-limit-cleanup"


def register_default_jobs(
    cron: CronManager,
    *,
    sweep_stale: JobFunc,
    flush_offline_queue: JobFunc,
    refresh_reminders: JobFunc,
    prune_rate_limits: JobFunc,
) -> None:
    cron.register(STALE_SWEEP_JOB, "*/5 * * * *", sweep_stale, command="fail_stale_tasks()")
    cron.register(QUEUE_FLUSH_JOB, "*/2 * * * *", flush_offline_queue, command="flush_offline_queue()")
    cron.register(TICKER_REMINDERS_JOB, "*/5 * * * *", refresh_reminders, command="refresh_reminders()")
    cron.register(RATE_LIMIT_CLEANUP_JOB, "*/5 * * * *", prune_rate_limits, command="rate_limiter.cleanup()")
