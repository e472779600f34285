"""
Publishing a snapshot: rotate it into the cache store, then announce it.

Both sinks are best-effort. Failures are logged and counted in
``nse_sink_writes_total`` and never reach the handler's result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from .metrics import metrics_registry
from .notify import DEFAULT_TOPIC, NotificationBus, notification_value
from .store import SnapshotKeys, SnapshotStore
from .utils import iso_timestamp


@dataclass(frozen=True)
class PublishOutcome:
    keys: SnapshotKeys
    timestamp: str
    cached: bool
    notified: bool

    @property
    def redis_keys(self) -> str:
        return f"{self.keys.current_data},{self.keys.current_timestamp}"


class SnapshotPublisher:
    def __init__(
        self,
        store: Optional[SnapshotStore],
        bus: Optional[NotificationBus],
        topic: str = DEFAULT_TOPIC,
        clock: Callable[[], str] = iso_timestamp,
        metrics=metrics_registry,
    ):
        self.store = store
        self.bus = bus
        self.topic = topic
        self._clock = clock
        self._metrics = metrics

    def publish(self, task_name: str, base: str, data: str, notify: bool = True) -> PublishOutcome:
        """Rotate ``data`` under ``base``; announce it unless ``notify`` is False."""
        timestamp = self._clock()
        keys = SnapshotKeys.for_base(base)
        cached = self._cache(base, data, timestamp)
        notified = False
        if notify and cached is False:
            logger.warning(f"Skipping notification for {base}: snapshot was not cached")
            self._metrics.sink(sink="bus", status="skipped")
        elif notify:
            notified = self._notify(task_name, f"{base}:current", timestamp)
        return PublishOutcome(keys=keys, timestamp=timestamp, cached=bool(cached), notified=notified)

    def _cache(self, base: str, data: str, timestamp: str) -> Optional[bool]:
        """True on write, False on failure, None when no store is configured."""
        if self.store is None:
            self._metrics.sink(sink="cache", status="skipped")
            return None
        try:
            self.store.rotate_generation(base, data, timestamp)
        except Exception as exc:
            self._metrics.sink(sink="cache", status="failure")
            logger.error(f"Cache rotate failed for {base}: {type(exc).__name__}: {exc}")
            return False
        self._metrics.sink(sink="cache", status="success")
        logger.debug(f"Rotated {base} ({len(data)} chars) at {timestamp}")
        return True

    def _notify(self, task_name: str, key: str, timestamp: str) -> bool:
        if self.bus is None:
            self._metrics.sink(sink="bus", status="skipped")
            return False
        try:
            self.bus.publish(self.topic, key, notification_value(task_name, timestamp))
        except Exception as exc:
            self._metrics.sink(sink="bus", status="failure")
            logger.error(f"Notification failed for {key}: {type(exc).__name__}: {exc}")
            return False
        self._metrics.sink(sink="bus", status="success")
        return True
