from __future__ import annotations

from typing import Sequence

from psycopg import sql as psql

STRIKES_TABLE = "optionchain_strikes"
SUMMARY_TABLE = "optionchain_summary"

# Per-leg columns, stored once with a ce_ prefix and once with pe_.
LEG_FIELDS = [
    "symbol",
    "label",
    "ltp",
    "bid",
    "ask",
    "open",
    "high",
    "low",
    "prev_close",
    "volume",
    "oi",
    "oi_change",
    "spot_price",
    "option_price",
    "implied_volatility",
    "days_to_expiry",
    "delta",
    "gamma",
    "theta",
    "vega",
]

STRIKE_COLUMNS = [
    "server_name",
    "underlying",
    "underlying_ltp",
    "underlying_prev_close",
    "expiry_date",
    "atm_strike",
    "strike",
    *[f"ce_{f}" for f in LEG_FIELDS],
    *[f"pe_{f}" for f in LEG_FIELDS],
    "lotsize",
    "tick_size",
    "created_at",
]

BUCKET_FIELDS = ["ce_volume", "pe_volume", "ce_oi", "pe_oi", "ce_oi_change", "pe_oi_change"]

SUMMARY_COLUMNS = [
    "server_name",
    "underlying",
    "underlying_ltp",
    "expiry_date",
    "created_at",
    *[f"{bucket}_{f}" for bucket in ("total", "above", "below") for f in BUCKET_FIELDS],
]


def insert_statement(table: str, cols: Sequence[str]) -> psql.Composed:
    """Plain append-only INSERT with named parameters (%(name)s)."""
    return psql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        psql.Identifier(table),
        psql.SQL(", ").join(psql.Identifier(c) for c in cols),
        psql.SQL(", ").join(psql.Placeholder(c) for c in cols),
    )


def previous_oi_select(side: str) -> psql.Composed:
    """Latest OI per ``<side>_symbol`` for one (server, underlying, expiry).

    Latest means newest ``created_at``; rows written in the same instant are
    ordered by ``id`` so the last inserted wins.
    """
    if side not in ("ce", "pe"):
        raise ValueError(f"side must be 'ce' or 'pe', got {side!r}")
    sym = psql.Identifier(f"{side}_symbol")
    oi = psql.Identifier(f"{side}_oi")
    return psql.SQL(
        "SELECT sym, oi FROM ("
        "SELECT {sym} AS sym, {oi} AS oi, "
        "ROW_NUMBER() OVER (PARTITION BY {sym} ORDER BY created_at DESC, id DESC) AS rn "
        "FROM {table} "
        "WHERE server_name = %(server_name)s AND underlying = %(underlying)s "
        "AND expiry_date = %(expiry_date)s AND {sym} IS NOT NULL"
        ") latest WHERE rn = 1"
    ).format(sym=sym, oi=oi, table=psql.Identifier(STRIKES_TABLE))


INSERT_STRIKE = insert_statement(STRIKES_TABLE, STRIKE_COLUMNS)
INSERT_SUMMARY = insert_statement(SUMMARY_TABLE, SUMMARY_COLUMNS)
HEALTH = psql.SQL("SELECT 1")
