"""
Snapshot store: a flat string key/value cache holding two generations per key.

Key layout is ``<base>:{current|previous}:{data|timestamp}``. ``rotate`` copies
whatever ``current`` holds into ``previous`` and then writes the new current
values. It is a read-then-write sequence, not a transaction; the worker runs
one task at a time so nothing races it in-process.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Protocol

import redis
from loguru import logger


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def close(self) -> None: ...


class RedisBackend:
    """redis-py backend with a bounded connection pool, opened on first use."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        timeout_s: float = 2.0,
        max_connections: int = 8,
        client: Optional[redis.Redis] = None,
    ):
        self._params = dict(
            host=host,
            port=port,
            password=password or None,
            db=db,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
            max_connections=max_connections,
            decode_responses=True,
        )
        self._client = client
        self._lock = threading.Lock()

    def _redis(self) -> redis.Redis:
        if self._client is None:
            with self._lock:
                if self._client is None:
                    pool = redis.ConnectionPool(**self._params)
                    self._client = redis.Redis(connection_pool=pool)
                    logger.info(
                        f"Redis pool created for {self._params['host']}:{self._params['port']} "
                        f"(max {self._params['max_connections']} connections)"
                    )
        return self._client

    def get(self, key: str) -> Optional[str]:
        return self._redis().get(key)

    def set(self, key: str, value: str) -> None:
        self._redis().set(key, value)

    def exists(self, key: str) -> bool:
        return bool(self._redis().exists(key))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client.connection_pool.disconnect()
            self._client = None


class InMemoryBackend:
    """Process-local backend for tests and single-process runs without Redis."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def close(self) -> None:
        pass


@dataclass(frozen=True)
class SnapshotKeys:
    current_data: str
    current_timestamp: str
    previous_data: str
    previous_timestamp: str

    @classmethod
    def for_base(cls, base: str) -> "SnapshotKeys":
        return cls(
            current_data=f"{base}:current:data",
            current_timestamp=f"{base}:current:timestamp",
            previous_data=f"{base}:previous:data",
            previous_timestamp=f"{base}:previous:timestamp",
        )


class SnapshotStore:
    def __init__(self, backend: KeyValueBackend):
        self._backend = backend

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def get(self, key: str) -> Optional[str]:
        return self._backend.get(key)

    def exists(self, key: str) -> bool:
        return self._backend.exists(key)

    def set(self, key: str, value: str) -> None:
        self._backend.set(key, value)

    def rotate(self, current_base: str, previous_base: str, data: str, timestamp: str) -> None:
        """Shift ``current_base`` into ``previous_base`` then write the new current pair.

        Data and timestamp are copied independently, each only if present.
        """
        for suffix in ("data", "timestamp"):
            existing = self._backend.get(f"{current_base}:{suffix}")
            if existing is not None:
                self._backend.set(f"{previous_base}:{suffix}", existing)
        self._backend.set(f"{current_base}:data", data)
        self._backend.set(f"{current_base}:timestamp", timestamp)

    def rotate_generation(self, base: str, data: str, timestamp: str) -> SnapshotKeys:
        self.rotate(f"{base}:current", f"{base}:previous", data, timestamp)
        return SnapshotKeys.for_base(base)

    def close(self) -> None:
        self._backend.close()
