"""
Task routing: normalized kind -> handler.

Kinds are matched case-insensitively with ``-``/``_`` ignored, so
``all-indices``, ``ALL_INDICES`` and ``allIndices`` are the same kind.
Invalid or unknown tasks are answered with an ``Error:`` string and never
reach the network.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from .errors import InvalidTask, TaskError, UnknownTaskKind
from .handlers import Handler
from .metrics import metrics_registry
from .models import Task
from .utils import normalize_kind


class TaskRouter:
    def __init__(self, metrics=metrics_registry) -> None:
        self._handlers: dict[str, Handler] = {}
        self._metrics = metrics

    def register(self, handler: Handler, *kinds: str) -> None:
        for kind in kinds:
            key = normalize_kind(kind)
            if key in self._handlers and self._handlers[key] is not handler:
                raise ValueError(f"Task kind {kind!r} is already registered")
            self._handlers[key] = handler

    @property
    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def resolve(self, kind: Optional[str]) -> Handler:
        if kind is None or not kind.strip():
            raise InvalidTask("taskType is required")
        handler = self._handlers.get(normalize_kind(kind))
        if handler is None:
            raise UnknownTaskKind(kind)
        return handler

    def route(self, task: Optional[Task]) -> str:
        """Run ``task`` on its handler and return the result string.

        Routing and validation errors come back as ``Error: ...``; anything
        unexpected propagates so the caller's retry layer can see it.
        """
        if task is None:
            return "Error: Input is null"
        handler_name = "none"
        try:
            handler = self.resolve(task.kind)
            handler_name = handler.name
            logger.info(f"Routing task kind={task.kind} symbol={task.symbol} to {handler_name}")
            result = handler.handle(task)
        except TaskError as e:
            result = f"Error: {e}"
        outcome = "error" if result.startswith("Error") else "ok"
        self._metrics.task_results_total.labels(handler=handler_name, outcome=outcome).inc()
        if outcome == "error":
            logger.warning(f"Task kind={task.kind} finished with: {result}")
        else:
            logger.info(f"Task kind={task.kind} finished: {result}")
        return result

    def route_payload(self, payload: Optional[dict]) -> str:
        try:
            task = Task.from_payload(payload)
        except InvalidTask as e:
            return f"Error: {e}"
        return self.route(task)
