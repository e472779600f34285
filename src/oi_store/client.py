from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, Sequence

import psycopg
from loguru import logger
from psycopg_pool import ConnectionPool, PoolTimeout

from . import sql as q
from .errors import map_db_error


@dataclass
class _Cfg:
    dsn: str
    app_name: Optional[str] = "nse_data_worker"
    connect_timeout: float = 10.0
    statement_timeout_ms: Optional[int] = None
    pool_min: int = 1
    pool_max: int = 4


class OIStore:
    """Append-only access to the strike and summary tables.

    The pool is created closed and opened on first use, so constructing the
    store never touches the network.
    """

    def __init__(self, config: dict):
        c = _Cfg(**config)
        self._cfg = c
        self._pool = ConnectionPool(
            conninfo=c.dsn,
            min_size=c.pool_min,
            max_size=c.pool_max,
            timeout=c.connect_timeout,
            open=False,
        )
        self._opened = False

    def close(self) -> None:
        if self._opened:
            self._pool.close()
            self._opened = False

    # ---------- internal helpers ----------

    @contextmanager
    def _conn(self):
        if not self._opened:
            self._pool.open(wait=False)
            self._opened = True
            logger.info(f"Opened Postgres pool (max {self._cfg.pool_max} connections)")
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                if self._cfg.app_name:
                    cur.execute("SET application_name = %s", (self._cfg.app_name,))
                if self._cfg.statement_timeout_ms is not None:
                    cur.execute(
                        "SET statement_timeout = %s", (f"{self._cfg.statement_timeout_ms}ms",)
                    )
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    # ---------- admin / health ----------

    def health(self) -> bool:
        try:
            with self._conn() as conn, conn.cursor() as cur:
                cur.execute(q.HEALTH)
                _ = cur.fetchone()
                return True
        except (psycopg.Error, PoolTimeout) as e:
            raise map_db_error(e) from e

    # ---------- reads ----------

    def previous_oi(self, server_name: str, underlying: str, expiry_date: str, side: str) -> dict[str, int]:
        """Latest persisted OI per ``side`` instrument symbol for one contract."""
        params = {"server_name": server_name, "underlying": underlying, "expiry_date": expiry_date}
        try:
            with self._conn() as conn, conn.cursor() as cur:
                cur.execute(q.previous_oi_select(side), params)
                return {sym: int(oi or 0) for sym, oi in cur.fetchall()}
        except (psycopg.Error, PoolTimeout) as e:
            raise map_db_error(e) from e

    # ---------- writes ----------

    def insert_run(self, rows: Sequence[dict], summary_row: dict) -> int:
        """Insert all strike rows and the summary row in one transaction."""
        try:
            with self._conn() as conn, conn.cursor() as cur:
                if rows:
                    cur.executemany(q.INSERT_STRIKE, list(rows))
                cur.execute(q.INSERT_SUMMARY, summary_row)
                return len(rows)
        except (psycopg.Error, PoolTimeout) as e:
            raise map_db_error(e) from e
