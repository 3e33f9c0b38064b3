# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file lists every JAC_* variable read by jac_agents.config.
"""

ENV_VARS = {
    # App / logging
    "JAC_APP_NAME": "App display name (default: jac).",
    "JAC_LOG_LEVEL": "Logging level (default: INFO).",
    "JAC_USER_ID": "User the console acts as (default: local-user).",
    # Switches
    "JAC_CONSOLE_ENABLED": "Run the interactive console (true/false).",
    "JAC_SCHEDULER_ENABLED": "Run the task scheduler loop (true/false).",
    "JAC_CRON_ENABLED": "Run the cron jobs (stale sweep, queue flush, reminders) (true/false).",
    # LLM / OpenRouter
    "JAC_OPENROUTER_API_KEY": "OpenRouter API key (without it an offline client is used).",
    "JAC_OPENROUTER_BASE_URL": "OpenRouter base URL (default: https://openrouter.ai/api/v1).",
    "JAC_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "JAC_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "JAC_APP_TITLE": "Optional OpenRouter metadata header title.",
    # Paths (gitignored)
    "JAC_DATA_DIR": "Local data directory (default: .local/jac).",
    "JAC_DB_PATH": "SQLite database for tasks, logs, entries and projects (default: <data_dir>/jac.sqlite3).",
    "JAC_OFFLINE_QUEUE_PATH": "Offline save queue JSON path (default: <data_dir>/offline_queue.json).",
    # Task scheduler
    "JAC_SCHEDULER_INTERVAL_SECONDS": "Seconds between scheduler ticks (default: 2).",
    "JAC_SCHEDULER_BATCH_LIMIT": "Max tasks claimed per tick (default: 8).",
    "JAC_TASK_TIMEOUT_SECONDS": "Per-task worker timeout (default: 300).",
    "JAC_LLM_FIRST_TOKEN_TIMEOUT_SECONDS": "Move to the next model when no token arrives in time (default: 30).",
    "JAC_LLM_READ_TIMEOUT_SECONDS": "HTTP read timeout, never below the first-token timeout (default: 60).",
    "JAC_LLM_CONNECT_TIMEOUT_SECONDS": "HTTP connect timeout (default: 5).",
    "JAC_STALE_TASK_SECONDS": "Running/queued tasks older than this are failed as stale (default: 600).",
    # Dispatcher guards
    "JAC_MAX_CONCURRENT_TASKS": "Max running+queued tasks per user (default: 10).",
    "JAC_DAILY_TASK_LIMIT": "Max tasks created per user per UTC day (default: 200).",
    "JAC_RATE_LIMIT_REQUESTS": "Dispatch requests allowed per window (default: 50).",
    "JAC_RATE_LIMIT_WINDOW_SECONDS": "Rate limit window (default: 60).",
    # Save path
    "JAC_SAVE_MAX_RETRIES": "Write attempts before a save is queued offline (default: 3).",
    "JAC_SAVE_BASE_DELAY_SECONDS": "Backoff base delay between save attempts (default: 1).",
    "JAC_OFFLINE_QUEUE_MAX_RETRIES": "Replays before a queued save is dropped (default: 5).",
    # Views
    "JAC_ACTIVITY_PAGE_SIZE": "Activity feed page size (default: 50).",
}
