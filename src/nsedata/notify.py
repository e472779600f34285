"""
Change notifications on the message bus.

Every successful snapshot write is announced with key ``<base>:current`` and a
small JSON body ``{"taskName": ..., "timestamp": ...}``; consumers read the
actual data from the cache store. Two backends:

- ``KafkaBus``: kafka-python producer, topic created on demand before first use
- ``InMemoryBus``: in-process pub/sub, used in tests and when Kafka is off
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from kafka import KafkaAdminClient, KafkaProducer
from kafka.admin import NewTopic
from kafka.errors import KafkaError, TopicAlreadyExistsError
from loguru import logger

DEFAULT_TOPIC = "nse.data"


def notification_value(task_name: str, timestamp: str) -> str:
    return json.dumps({"taskName": task_name, "timestamp": timestamp})


class NotificationBus(Protocol):
    def publish(self, topic: str, key: str, value: str) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class Notification:
    topic: str
    key: str
    value: str

    @property
    def payload(self) -> dict:
        return json.loads(self.value)


Subscriber = Callable[[Notification], None]


class InMemoryBus:
    """In-process pub/sub bus.

    Keeps every published notification and fans out to subscribers in
    registration order. A failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._subs: list[Subscriber] = []
        self.published: list[Notification] = []

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Notification subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subs.remove(callback)
        except ValueError:
            pass

    def publish(self, topic: str, key: str, value: str) -> None:
        note = Notification(topic=topic, key=key, value=value)
        self.published.append(note)
        for callback in list(self._subs):
            try:
                callback(note)
            except Exception as exc:
                logger.debug(f"Notification subscriber error (ignored): {type(exc).__name__}: {exc}")

    def close(self) -> None:
        self._subs.clear()


class KafkaBus:
    """kafka-python producer with idempotent, on-demand topic creation.

    Producer and admin client are created lazily. A topic is checked once per
    process: create it (an existing topic is fine), then poll metadata until
    it is visible or the wait runs out. If that check fails the message is
    still sent; the broker may auto-create the topic.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        *,
        partitions: int = 1,
        replication_factor: int = 1,
        create_timeout_ms: int = 30_000,
        metadata_wait_ms: int = 3_000,
        metadata_poll_ms: int = 200,
        producer: Optional[KafkaProducer] = None,
        admin: Optional[KafkaAdminClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._servers = [s.strip() for s in bootstrap_servers.split(",") if s.strip()]
        self._partitions = partitions
        self._replication = replication_factor
        self._create_timeout_ms = create_timeout_ms
        self._metadata_wait_ms = metadata_wait_ms
        self._metadata_poll_ms = metadata_poll_ms
        self._producer = producer
        self._admin = admin
        self._sleep = sleep
        self._ready_topics: set[str] = set()

    def _producer_client(self) -> KafkaProducer:
        if self._producer is None:
            self._producer = KafkaProducer(
                bootstrap_servers=self._servers,
                key_serializer=lambda k: k.encode("utf-8"),
                value_serializer=lambda v: v.encode("utf-8"),
                acks="all",
                retries=3,
            )
            logger.info(f"Kafka producer connected to {','.join(self._servers)}")
        return self._producer

    def _admin_client(self) -> KafkaAdminClient:
        if self._admin is None:
            self._admin = KafkaAdminClient(
                bootstrap_servers=self._servers, client_id="nse-data-worker-admin"
            )
        return self._admin

    def ensure_topic(self, topic: str) -> bool:
        """Create ``topic`` if needed and wait for its metadata. Returns readiness."""
        if topic in self._ready_topics:
            return True
        try:
            admin = self._admin_client()
            try:
                admin.create_topics(
                    [
                        NewTopic(
                            name=topic,
                            num_partitions=self._partitions,
                            replication_factor=self._replication,
                        )
                    ],
                    timeout_ms=self._create_timeout_ms,
                )
                logger.info(f"Created Kafka topic {topic}")
            except TopicAlreadyExistsError:
                logger.debug(f"Kafka topic {topic} already exists")

            waited = 0
            while waited <= self._metadata_wait_ms:
                if topic in admin.list_topics():
                    self._ready_topics.add(topic)
                    return True
                self._sleep(self._metadata_poll_ms / 1000.0)
                waited += self._metadata_poll_ms
            logger.warning(
                f"Kafka topic {topic} not visible after {self._metadata_wait_ms}ms, sending anyway"
            )
        except KafkaError as e:
            logger.warning(f"Could not ensure Kafka topic {topic}: {e}; sending anyway")
        return False

    def publish(self, topic: str, key: str, value: str) -> None:
        self.ensure_topic(topic)
        future = self._producer_client().send(topic, key=key, value=value)
        future.add_callback(self._on_sent, key)
        future.add_errback(self._on_error, key)

    def _on_sent(self, key: str, metadata) -> None:
        logger.debug(
            f"Notified {key} -> {metadata.topic}[{metadata.partition}]@{metadata.offset}"
        )

    def _on_error(self, key: str, exc: Exception) -> None:
        logger.error(f"Notification for {key} failed: {type(exc).__name__}: {exc}")

    def close(self) -> None:
        if self._producer is not None:
            try:
                self._producer.flush(timeout=5)
            finally:
                self._producer.close()
                self._producer = None
        if self._admin is not None:
            self._admin.close()
            self._admin = None
