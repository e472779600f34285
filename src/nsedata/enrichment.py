"""
Per-leg Greeks enrichment.

Legs are enriched strictly one at a time, CE before PE for each strike, with
a fixed pause after every analytics call to stay under provider rate limits.
A failed leg is counted and left as-is; the run always continues.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable

from loguru import logger

from .analytics import AnalyticsClient
from .metrics import metrics_registry
from .models import ChainEntry, GreeksResponse, OptionLeg

_DERIVATIVE_EXCHANGES = {"NFO", "BFO", "CDS", "MCX"}


def map_exchange(hint: str | None) -> str:
    """Map an underlying's exchange hint to the derivatives segment (NSE_INDEX -> NFO)."""
    if not hint or not hint.strip():
        return "NFO"
    upper = hint.strip().upper()
    if upper in _DERIVATIVE_EXCHANGES:
        return upper
    if "NSE" in upper:
        return "NFO"
    if "BSE" in upper:
        return "BFO"
    if "CDS" in upper:
        return "CDS"
    if "MCX" in upper:
        return "MCX"
    return "NFO"


def merge_greeks(leg: OptionLeg, resp: GreeksResponse) -> bool:
    """Copy analytics fields onto ``leg``. False when the response carries nothing usable."""
    if not resp.has_analytics and not resp.succeeded:
        return False
    for field in ("spot_price", "option_price", "implied_volatility", "days_to_expiry"):
        value = getattr(resp, field)
        if value is not None:
            setattr(leg, field, value)
    greeks = resp.resolved_greeks()
    if greeks is not None:
        leg.greeks = greeks
    return True


@dataclass
class EnrichmentStats:
    total: int = 0
    enriched: int = 0
    skipped: int = 0
    errors: int = 0

    def __str__(self) -> str:
        return (
            f"{self.enriched}/{self.total} legs enriched "
            f"({self.skipped} skipped, {self.errors} errors)"
        )


class GreeksEnricher:
    def __init__(
        self,
        analytics: AnalyticsClient,
        sleep: Callable[[float], None] = time.sleep,
        metrics=metrics_registry,
    ):
        self._analytics = analytics
        self._sleep = sleep
        self._metrics = metrics

    def enrich(self, chain: Iterable[ChainEntry], exchange_hint: str | None, pause_ms: int) -> EnrichmentStats:
        exchange = map_exchange(exchange_hint)
        stats = EnrichmentStats()
        for entry in chain:
            for _, leg in entry.legs():
                if not leg.symbol:
                    continue
                stats.total += 1
                outcome = self._enrich_leg(leg, exchange, pause_ms)
                setattr(stats, outcome, getattr(stats, outcome) + 1)
                self._metrics.enrich_calls_total.labels(outcome=outcome).inc()

        logger.info(f"Greeks enrichment on {exchange}: {stats}")
        return stats

    def _enrich_leg(self, leg: OptionLeg, exchange: str, pause_ms: int) -> str:
        outcome = "errors"
        try:
            resp = self._analytics.option_greeks(leg.symbol, exchange)
            if merge_greeks(leg, resp):
                outcome = "enriched"
            else:
                outcome = "skipped"
                logger.debug(f"No analytics for {leg.symbol} (status={resp.status})")
        except Exception as exc:
            logger.warning(f"Greeks for {leg.symbol} failed: {type(exc).__name__}: {exc}")

        self._sleep(pause_ms / 1000.0)
        return outcome
