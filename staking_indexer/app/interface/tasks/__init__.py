from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .replay_events_task import replay_events_task
from .rollback_task import rollback_task
from .status_task import status_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "replay_events_task": replay_events_task,
    "rollback_task": rollback_task,
    "status_task": status_task,
}
