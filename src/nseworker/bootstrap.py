"""
Composition root: build every client once from ``Settings`` and wire them
into a router. Sinks that are configured off are left out, and the pipeline
treats a missing sink as a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from loguru import logger

from nsedata.analytics import OpenAlgoClient
from nsedata.enrichment import GreeksEnricher
from nsedata.errors import SinkUnavailable
from nsedata.expiry import ExpiryCache
from nsedata.fetch import FetchClient
from nsedata.handlers import (
    AllIndicesHandler,
    BrokerChainHandler,
    EquityVariationsHandler,
    HandlerDefaults,
    OptionChainHandler,
)
from nsedata.notify import InMemoryBus, KafkaBus, NotificationBus
from nsedata.publish import SnapshotPublisher
from nsedata.router import TaskRouter
from nsedata.store import InMemoryBackend, RedisBackend, SnapshotStore
from oi_store import OIDeltaWriter, OIStore

from .config import Settings

T = TypeVar("T")


def _optional(factory: Callable[[Settings], T], settings: Settings) -> Optional[T]:
    try:
        return factory(settings)
    except SinkUnavailable as e:
        logger.warning(f"{e}; continuing without it")
        return None


def build_store(settings: Settings) -> SnapshotStore:
    if settings.CACHE_BACKEND == "off":
        raise SinkUnavailable("cache")
    if settings.CACHE_BACKEND == "inmem":
        return SnapshotStore(InMemoryBackend())
    return SnapshotStore(
        RedisBackend(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD,
            db=settings.REDIS_DB,
            timeout_s=settings.REDIS_TIMEOUT_MS / 1000.0,
            max_connections=settings.REDIS_POOL_MAX,
        )
    )


def build_bus(settings: Settings) -> NotificationBus:
    if settings.BUS_BACKEND == "off":
        raise SinkUnavailable("bus")
    if settings.BUS_BACKEND == "inmem":
        return InMemoryBus()
    return KafkaBus(settings.KAFKA_BOOTSTRAP_SERVERS)


def build_oi_store(settings: Settings) -> OIStore:
    if not settings.database_url:
        raise SinkUnavailable("db", "DATABASE_URL not set")
    return OIStore(
        {
            "dsn": settings.database_url,
            "pool_min": settings.DB_POOL_MIN,
            "pool_max": settings.DB_POOL_MAX,
            "statement_timeout_ms": settings.DB_STATEMENT_TIMEOUT_MS,
        }
    )


def build_analytics(settings: Settings) -> OpenAlgoClient:
    if not settings.ANALYTICS_URL:
        raise SinkUnavailable("analytics", "ANALYTICS_URL not set")
    return OpenAlgoClient(
        settings.ANALYTICS_URL,
        settings.ANALYTICS_API_KEY,
        timeout_s=settings.ANALYTICS_TIMEOUT_S,
        connect_timeout_s=settings.CONNECT_TIMEOUT_S,
    )


def handler_defaults(settings: Settings) -> HandlerDefaults:
    return HandlerDefaults(
        base_url=settings.NSE_BASE_URL,
        default_timeout_ms=settings.DEFAULT_TIMEOUT_MS,
        equity_timeout_ms=settings.EQUITY_TIMEOUT_MS,
        default_symbol=settings.DEFAULT_SYMBOL.upper(),
        server_name=settings.SERVER_NAME,
        greeks_exchange=settings.GREEKS_EXCHANGE,
        api_call_pause_ms=settings.API_CALL_PAUSE_MS,
    )


@dataclass
class Worker:
    router: TaskRouter
    expiry_cache: ExpiryCache
    publisher: SnapshotPublisher
    closers: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for close in reversed(self.closers):
            try:
                close()
            except Exception as exc:
                logger.warning(f"Error during shutdown: {type(exc).__name__}: {exc}")
        self.closers.clear()

    def __enter__(self) -> "Worker":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def build_worker(settings: Settings, fetcher: Optional[FetchClient] = None) -> Worker:
    fetcher = fetcher or FetchClient(connect_timeout_s=settings.CONNECT_TIMEOUT_S)
    store = _optional(build_store, settings)
    bus = _optional(build_bus, settings)
    oi_store = _optional(build_oi_store, settings)
    analytics = _optional(build_analytics, settings)

    publisher = SnapshotPublisher(store, bus, topic=settings.NOTIFY_TOPIC)
    defaults = handler_defaults(settings)
    expiry_cache = ExpiryCache(fetcher, store, base_url=settings.NSE_BASE_URL)
    enricher = GreeksEnricher(analytics) if analytics is not None else None
    writer = OIDeltaWriter(oi_store) if oi_store is not None else None

    router = TaskRouter()
    router.register(AllIndicesHandler(fetcher, publisher, defaults), "allindices")
    router.register(EquityVariationsHandler(fetcher, publisher, defaults), "equity", "equitydata")
    router.register(
        OptionChainHandler(fetcher, publisher, expiry_cache, defaults, enricher=enricher, writer=writer),
        "optionchain",
        "optionchange",
    )
    router.register(
        BrokerChainHandler(analytics, publisher, defaults, enricher=enricher, writer=writer),
        "ltp",
        "ltpcalculator",
    )

    closers: list[Callable[[], None]] = [fetcher.close]
    for resource in (store, bus, oi_store, analytics):
        if resource is not None:
            closers.append(resource.close)
    logger.info(
        f"Worker ready: cache={settings.CACHE_BACKEND if store else 'off'} "
        f"bus={settings.BUS_BACKEND if bus else 'off'} db={'on' if oi_store else 'off'} "
        f"analytics={'on' if analytics else 'off'}"
    )
    return Worker(router=router, expiry_cache=expiry_cache, publisher=publisher, closers=closers)
