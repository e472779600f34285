"""
OI-delta aggregation: pure functions, no I/O.

For each leg, ``oi_change = oi - previous_oi`` where the previous value is the
last persisted OI for the same instrument symbol (0 if never seen). Strikes
are bucketed against the underlying's LTP: above, below, and every strike in
``total``. A strike exactly at the LTP, or any strike when the LTP is
unknown, lands in ``total`` only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional

from nsedata.models import ChainEntry, OptionLeg

from .models import AggregateBucket, PersistContext, RunSummary
from .sql import LEG_FIELDS


@dataclass(frozen=True)
class StrikeDelta:
    strike: float
    ce_oi_change: int
    pe_oi_change: int


def oi_change(leg: Optional[OptionLeg], previous: Mapping[str, int]) -> int:
    if leg is None:
        return 0
    prior = previous.get(leg.symbol, 0) if leg.symbol else 0
    return (leg.oi or 0) - (prior or 0)


def _count(leg: Optional[OptionLeg], field: str) -> int:
    return (getattr(leg, field) or 0) if leg is not None else 0


def _first_set(entry: ChainEntry, field: str):
    for leg in (entry.ce, entry.pe):
        if leg is not None and getattr(leg, field) is not None:
            return getattr(leg, field)
    return None


def _bucket_for(entry: ChainEntry, delta: StrikeDelta) -> AggregateBucket:
    return AggregateBucket(
        ce_volume=_count(entry.ce, "volume"),
        pe_volume=_count(entry.pe, "volume"),
        ce_oi=_count(entry.ce, "oi"),
        pe_oi=_count(entry.pe, "oi"),
        ce_oi_change=delta.ce_oi_change,
        pe_oi_change=delta.pe_oi_change,
    )


def aggregate_chain(
    chain: Iterable[ChainEntry],
    underlying_ltp: Optional[float],
    previous_ce: Mapping[str, int],
    previous_pe: Mapping[str, int],
) -> tuple[list[StrikeDelta], dict[str, AggregateBucket]]:
    deltas: list[StrikeDelta] = []
    buckets = {"total": AggregateBucket(), "above": AggregateBucket(), "below": AggregateBucket()}
    for entry in chain:
        delta = StrikeDelta(
            strike=entry.strike,
            ce_oi_change=oi_change(entry.ce, previous_ce),
            pe_oi_change=oi_change(entry.pe, previous_pe),
        )
        deltas.append(delta)
        contribution = _bucket_for(entry, delta)
        buckets["total"].add(contribution)
        if underlying_ltp is not None and entry.strike > underlying_ltp:
            buckets["above"].add(contribution)
        elif underlying_ltp is not None and entry.strike < underlying_ltp:
            buckets["below"].add(contribution)
    return deltas, buckets


def _leg_columns(prefix: str, leg: Optional[OptionLeg], change: int) -> dict:
    if leg is None:
        return {f"{prefix}_{f}": None for f in LEG_FIELDS}
    greeks = leg.greeks
    values = {
        "symbol": leg.symbol,
        "label": leg.label,
        "ltp": leg.ltp,
        "bid": leg.bid,
        "ask": leg.ask,
        "open": leg.open,
        "high": leg.high,
        "low": leg.low,
        "prev_close": leg.prev_close,
        "volume": leg.volume,
        "oi": leg.oi,
        "oi_change": change,
        "spot_price": leg.spot_price,
        "option_price": leg.option_price,
        "implied_volatility": leg.implied_volatility,
        "days_to_expiry": leg.days_to_expiry,
        "delta": greeks.delta if greeks else None,
        "gamma": greeks.gamma if greeks else None,
        "theta": greeks.theta if greeks else None,
        "vega": greeks.vega if greeks else None,
    }
    return {f"{prefix}_{k}": v for k, v in values.items()}


def strike_rows(
    chain: Iterable[ChainEntry],
    deltas: Iterable[StrikeDelta],
    ctx: PersistContext,
    underlying_ltp: Optional[float],
    created_at: datetime,
) -> list[dict]:
    rows = []
    for entry, delta in zip(chain, deltas):
        row = {
            "server_name": ctx.server_name,
            "underlying": ctx.underlying,
            "underlying_ltp": underlying_ltp,
            "underlying_prev_close": ctx.underlying_prev_close,
            "expiry_date": ctx.expiry_date,
            "atm_strike": ctx.atm_strike,
            "strike": entry.strike,
            "lotsize": _first_set(entry, "lotsize"),
            "tick_size": _first_set(entry, "tick_size"),
            "created_at": created_at,
        }
        row.update(_leg_columns("ce", entry.ce, delta.ce_oi_change))
        row.update(_leg_columns("pe", entry.pe, delta.pe_oi_change))
        rows.append(row)
    return rows


def build_summary(
    ctx: PersistContext,
    underlying_ltp: Optional[float],
    buckets: Mapping[str, AggregateBucket],
    created_at: datetime,
) -> RunSummary:
    return RunSummary(
        server_name=ctx.server_name,
        underlying=ctx.underlying,
        underlying_ltp=underlying_ltp,
        expiry_date=ctx.expiry_date,
        created_at=created_at,
        total=buckets["total"],
        above=buckets["above"],
        below=buckets["below"],
    )
