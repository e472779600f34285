"""
Outer execution policy around the router, used by the CLI.

The pipeline itself makes exactly one attempt per task. Here a task's
``retries`` are honoured for raised exceptions only (a returned ``Error:``
string is a final answer), with a fixed interval between attempts, and the
task's ``delay_ms`` is slept once after it finishes either way.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from loguru import logger

from nsedata.errors import InvalidTask
from nsedata.models import Task
from nsedata.router import TaskRouter

DEFAULT_RETRY_INTERVAL_MS = 100


def run_task(
    router: TaskRouter,
    task: Optional[Task],
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    if task is None:
        return "Error: Input is null"
    attempts = task.retries + 1
    interval_ms = task.delay_ms or DEFAULT_RETRY_INTERVAL_MS
    try:
        for attempt in range(1, attempts):
            try:
                return router.route(task)
            except Exception as exc:
                logger.warning(
                    f"Task kind={task.kind} attempt {attempt}/{attempts} failed: "
                    f"{type(exc).__name__}: {exc}; retrying in {interval_ms}ms"
                )
                sleep(interval_ms / 1000.0)
        return router.route(task)
    finally:
        if task.delay_ms > 0:
            logger.debug(f"Applying post-task delay of {task.delay_ms}ms")
            sleep(task.delay_ms / 1000.0)


def run_batch(
    router: TaskRouter,
    tasks: Optional[Sequence[Optional[Task]]],
    inter_task_delay_ms: int = 0,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Run ``tasks`` in order; one result per task joined with `` | ``."""
    if not tasks:
        return "Error: Batch input is null or tasks list is empty"

    results = []
    for i, task in enumerate(tasks, start=1):
        if task is None or not task.kind or not task.kind.strip():
            results.append(f"Error: Task {i} has null or empty taskType")
        else:
            try:
                results.append(f"Task {i} ({task.kind}): {run_task(router, task, sleep)}")
            except Exception as exc:
                results.append(f"Task {i} ({task.kind}): Error - {exc}")
        if i < len(tasks) and inter_task_delay_ms > 0:
            sleep(inter_task_delay_ms / 1000.0)
    return " | ".join(results)


def load_batch(path: Path) -> tuple[list[Optional[Task]], int]:
    """Read a batch file: a JSON list of tasks, or ``{"tasks": [...], "interTaskDelay": ms}``."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise InvalidTask(f"cannot read batch file {path}: {e}") from e

    delay_ms = 0
    if isinstance(raw, dict):
        delay_ms = int(raw.get("interTaskDelay") or raw.get("inter_task_delay_ms") or 0)
        raw = raw.get("tasks")
    if not isinstance(raw, list):
        raise InvalidTask(f"batch file {path} has no task list")
    return [Task.from_payload(item) if item is not None else None for item in raw], delay_ms
