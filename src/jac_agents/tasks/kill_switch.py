# src/jac_agents/tasks/kill_switch.py

from __future__ import annotations

import logging
from typing import Any

from ..core.ports import TaskRepo

logger = logging.getLogger(__name__)

STOP_ALL = "stop_all"
STOP_ONE = "stop_one"

INVALID_ACTION = 'Invalid action. Use "stop_all" or "stop_one" with taskId.'
DEFAULT_REASON = "Cancelled by user"


def kill_switch(
    tasks: TaskRepo,
    user_id: str,
    action: str,
    task_id: str | None = None,
    *,
    reason: str = DEFAULT_REASON,
) -> dict[str, Any]:
    """
    Emergency stop: cancel the user's running/queued/pending tasks.

    stop_all cancels every one of them; stop_one cancels task_id if the user
    owns it. Workers notice at their next checkpoint.
    """
    if not user_id:
        raise PermissionError("Unauthorized")

    if action == STOP_ALL:
        ids = tasks.cancel_tasks(user_id, reason=reason)
    elif action == STOP_ONE and task_id:
        ids = tasks.cancel_tasks(user_id, task_id=task_id, reason=reason)
    else:
        raise ValueError(INVALID_ACTION)

    logger.info("Kill switch %s user=%s cancelled=%d", action, user_id, len(ids))
    return {
        "success": True,
        "action": action,
        "cancelled": len(ids),
        "cancelledIds": ids,
    }
