# src/jac_agents/config.py

"""
JAC settings: JAC_* environment variables, with .env loaded first.

Nothing here needs a secret at import time; a missing API key only switches
the app to the offline LLM client.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, TypeVar

from dotenv import load_dotenv

ENV_PREFIX = "JAC"
_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_N = TypeVar("_N", int, float)

load_dotenv(override=False)


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _raw(name: str) -> str | None:
    """Env value, with blank treated as unset."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    return next((v for v in map(_raw, names) if v is not None), default)


def _env_bool(name: str, default: bool) -> bool:
    v = _raw(name)
    return default if v is None else v.strip().lower() in _TRUTHY


def _env_number(name: str, default: _N, cast: Callable[[str], _N]) -> _N:
    v = _raw(name)
    if v is None:
        return default
    try:
        return cast(v.strip())
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    v = _raw(name)
    if v is None:
        return list(default)
    return v.replace(",", " ").split()


def _env_path(name: str, default: Path) -> Path:
    v = _raw(name)
    return default if v is None else Path(v).expanduser()



@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    user_id: str

    # ---- Global switches ----
    console_enabled: bool
    scheduler_enabled: bool
    cron_enabled: bool

    # ---- LLM / OpenRouter ----
    openrouter_api_key: Optional[str]
    openrouter_base_url: str
    llm_models: List[str]
    extra_headers: Dict[str, str]

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    offline_queue_path: Path

    # ---- Task scheduler ----
    scheduler_interval_seconds: float
    scheduler_batch_limit: int
    task_timeout_seconds: float
    stale_task_seconds: int

    # ---- Dispatcher guards ----
    max_concurrent_tasks: int
    daily_task_limit: int
    rate_limit_requests: int
    rate_limit_window_seconds: float

    # ---- Save path ----
    save_max_retries: int
    save_base_delay_seconds: float
    offline_queue_max_retries: int

    # ---- Views ----
    activity_page_size: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="jac") or "jac"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        user_id = _env(_k("USER_ID"), "local-user").strip() or "local-user"

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        scheduler_enabled = _env_bool(_k("SCHEDULER_ENABLED"), True)
        cron_enabled = _env_bool(_k("CRON_ENABLED"), True)

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        http_referer = _env(_k("HTTP_REFERER"), "https://example.com")
        title = _env(_k("APP_TITLE"), app_name)

        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "anthropic/claude-3.5-haiku",
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/jac"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "jac.sqlite3")
        offline_queue_path = _env_path(_k("OFFLINE_QUEUE_PATH"), data_dir / "offline_queue.json")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            user_id=user_id,
            console_enabled=console_enabled,
            scheduler_enabled=scheduler_enabled,
            cron_enabled=cron_enabled,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            data_dir=data_dir,
            db_path=db_path,
            offline_queue_path=offline_queue_path,
            scheduler_interval_seconds=_env_number(_k("SCHEDULER_INTERVAL_SECONDS"), 2.0, float),
            scheduler_batch_limit=_env_number(_k("SCHEDULER_BATCH_LIMIT"), 8, int),
            task_timeout_seconds=_env_number(_k("TASK_TIMEOUT_SECONDS"), 300.0, float),
            stale_task_seconds=_env_number(_k("STALE_TASK_SECONDS"), 600, int),
            max_concurrent_tasks=_env_number(_k("MAX_CONCURRENT_TASKS"), 10, int),
            daily_task_limit=_env_number(_k("DAILY_TASK_LIMIT"), 200, int),
            rate_limit_requests=_env_number(_k("RATE_LIMIT_REQUESTS"), 50, int),
            rate_limit_window_seconds=_env_number(_k("RATE_LIMIT_WINDOW_SECONDS"), 60.0, float),
            save_max_retries=_env_number(_k("SAVE_MAX_RETRIES"), 3, int),
            save_base_delay_seconds=_env_number(_k("SAVE_BASE_DELAY_SECONDS"), 1.0, float),
            offline_queue_max_retries=_env_number(_k("OFFLINE_QUEUE_MAX_RETRIES"), 5, int),
            activity_page_size=_env_number(_k("ACTIVITY_PAGE_SIZE"), 50, int),
        )


_LOCAL_TOGGLES = {
    "CONSOLE_ENABLED": "console_enabled",
    "SCHEDULER_ENABLED": "scheduler_enabled",
    "CRON_ENABLED": "cron_enabled",
}


def _apply_local_overrides(settings: Settings) -> Settings:
    """Feature toggles from an optional, gitignored config_local.py. Secrets stay in .env."""
    try:
        import config_local  # type: ignore
    except ImportError:
        return settings
    changes = {
        attr: bool(getattr(config_local, name))
        for name, attr in _LOCAL_TOGGLES.items()
        if hasattr(config_local, name)
    }
    return replace(settings, **changes) if changes else settings


SETTINGS = _apply_local_overrides(Settings.from_env())


def get_settings() -> Settings:
    return SETTINGS
