"""
Best-effort persistence of one option-chain run.

Loads the previous OI for both sides, computes deltas and buckets, and
writes strike rows plus one summary row. Any database failure is logged and
counted; the caller gets ``None`` instead of an exception.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence

from loguru import logger

from nsedata.metrics import metrics_registry
from nsedata.models import ChainEntry
from nsedata.utils import utc_now

from .aggregate import aggregate_chain, build_summary, strike_rows
from .client import OIStore
from .models import PersistContext, RunSummary


class OIDeltaWriter:
    def __init__(
        self,
        store: OIStore,
        clock: Callable[[], datetime] = utc_now,
        metrics=metrics_registry,
    ):
        self._store = store
        self._clock = clock
        self._metrics = metrics

    def _previous(self, ctx: PersistContext, side: str) -> dict[str, int]:
        try:
            return self._store.previous_oi(ctx.server_name, ctx.underlying, ctx.expiry_date, side)
        except Exception as exc:
            logger.warning(
                f"Previous {side.upper()} OI lookup failed for {ctx.underlying} {ctx.expiry_date}, "
                f"treating as first run: {type(exc).__name__}: {exc}"
            )
            return {}

    def persist(
        self,
        chain: Sequence[ChainEntry],
        underlying_ltp: Optional[float],
        ctx: PersistContext,
    ) -> Optional[RunSummary]:
        if not chain:
            logger.info(f"Empty chain for {ctx.underlying} {ctx.expiry_date}, nothing to persist")
            self._metrics.sink(sink="db", status="skipped")
            return None

        previous_ce = self._previous(ctx, "ce")
        previous_pe = self._previous(ctx, "pe")
        deltas, buckets = aggregate_chain(chain, underlying_ltp, previous_ce, previous_pe)
        created_at = self._clock()
        rows = strike_rows(chain, deltas, ctx, underlying_ltp, created_at)
        summary = build_summary(ctx, underlying_ltp, buckets, created_at)

        try:
            inserted = self._store.insert_run(rows, summary.to_row())
        except Exception as exc:
            self._metrics.sink(sink="db", status="failure")
            logger.error(
                f"Persisting {ctx.underlying} {ctx.expiry_date} failed: {type(exc).__name__}: {exc}"
            )
            return None

        self._metrics.sink(sink="db", status="success")
        logger.success(
            f"Stored {inserted} strikes + summary for {ctx.underlying} {ctx.expiry_date} "
            f"(total CE OI chg {summary.total.ce_oi_change}, PE OI chg {summary.total.pe_oi_change})"
        )
        return summary
