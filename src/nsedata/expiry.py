"""
Expiry reference data: a daily-refresh cache over NSE contract-info, plus
the helpers that pull expiry dates out of it and normalize their format.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Optional
from urllib.parse import quote

from loguru import logger

from .errors import FetchError
from .fetch import NSE_BASE_URL, FetchClient, nse_headers
from .store import SnapshotStore
from .utils import iso_timestamp, parse_datetime

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_COMPACT = re.compile(r"(\d{2})([A-Za-z]{3})(\d{2})")
_ISO = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_LONG = re.compile(r"(\d{2})-([A-Za-z]{3})-(\d{4})")
_SHORT = re.compile(r"(\d{2})-([A-Za-z]{3})-(\d{2})")


def _month(name: str) -> Optional[str]:
    mon = name.capitalize()
    return mon if mon in MONTHS else None


def normalize_expiry(text: str) -> str:
    """Normalize an expiry label to ``DD-Mon-YYYY``.

    Accepts ``03FEB26``, ``2026-02-03``, ``03-feb-2026`` and ``03-Feb-26``.
    Anything unrecognized is returned unchanged.
    """
    s = (text or "").strip()
    m = _COMPACT.fullmatch(s)
    if m and _month(m.group(2)):
        return f"{m.group(1)}-{_month(m.group(2))}-20{m.group(3)}"
    m = _ISO.fullmatch(s)
    if m:
        try:
            d = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return text
        return f"{d.day:02d}-{MONTHS[d.month - 1]}-{d.year}"
    m = _LONG.fullmatch(s)
    if m and _month(m.group(2)):
        return f"{m.group(1)}-{_month(m.group(2))}-{m.group(3)}"
    m = _SHORT.fullmatch(s)
    if m and _month(m.group(2)):
        return f"{m.group(1)}-{_month(m.group(2))}-20{m.group(3)}"
    return text


def compact_expiry(text: str) -> str:
    """``03-Feb-2026`` -> ``03FEB26``; the form broker option symbols use."""
    normalized = normalize_expiry(text)
    m = _LONG.fullmatch(normalized)
    if not m:
        return re.sub(r"[^A-Za-z0-9]", "", text).upper()
    return f"{m.group(1)}{m.group(2).upper()}{m.group(3)[2:]}"


# --- expiry extraction ---

Strategy = Callable[[dict], Optional[list]]


def _key(name: str) -> Strategy:
    def strategy(obj: dict) -> Optional[list]:
        value = obj.get(name)
        return value if isinstance(value, list) else None

    return strategy


def _nested(outer: str, inner: str) -> Strategy:
    def strategy(obj: dict) -> Optional[list]:
        container = obj.get(outer)
        if isinstance(container, dict) and isinstance(container.get(inner), list):
            return container[inner]
        return None

    return strategy


def _first_array(obj: dict) -> Optional[list]:
    for value in obj.values():
        if isinstance(value, list):
            return value
    return None


# Highest priority first; the first strategy that finds an array wins.
EXPIRY_STRATEGIES: list[tuple[str, Strategy]] = [
    ("expiryDates", _key("expiryDates")),
    ("expiries", _key("expiries")),
    ("data.expiryDates", _nested("data", "expiryDates")),
    ("first-array", _first_array),
]


def extract_expiries(json_text: Optional[str], count: int) -> list[str]:
    """Up to ``count`` expiry strings from a contract-info payload, in upstream order.

    Non-string entries among the first ``count`` are dropped, so fewer may be
    returned. Malformed or non-object JSON yields an empty list.
    """
    if not json_text:
        return []
    try:
        obj: Any = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.warning(f"Contract-info payload is not valid JSON: {e}")
        return []
    if not isinstance(obj, dict):
        return []

    for name, strategy in EXPIRY_STRATEGIES:
        found = strategy(obj)
        if found is not None:
            dates = [e for e in found[: max(count, 0)] if isinstance(e, str) and e.strip()]
            logger.debug(f"Expiry dates via {name}: {dates}")
            return dates
    return []


def _local_now() -> datetime:
    return datetime.now().astimezone()


class ExpiryCache:
    """Contract-info JSON per symbol, refreshed at most once per local calendar day.

    Args:
        fetcher: HTTP client for contract-info
        store: Snapshot store holding the cached payload; None means always fetch
        tz: Zone that defines "today" (None = system local zone)
    """

    def __init__(
        self,
        fetcher: FetchClient,
        store: Optional[SnapshotStore],
        base_url: str = NSE_BASE_URL,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = _local_now,
    ):
        self._fetcher = fetcher
        self._store = store
        self._base_url = base_url.rstrip("/")
        self._tz = tz
        self._clock = clock

    @staticmethod
    def keys(symbol: str) -> tuple[str, str]:
        base = f"nse:optionchain:{symbol}:expiries"
        return f"{base}:data", f"{base}:timestamp"

    def is_fresh(self, fetched_at: str) -> bool:
        try:
            fetched = parse_datetime(fetched_at).astimezone(self._tz)
        except (TypeError, ValueError):
            return False
        return fetched.date() == self._clock().astimezone(self._tz).date()

    def get_expiries(self, symbol: str, timeout_ms: int) -> str:
        """Contract-info JSON for ``symbol``; cached today or fetched fresh.

        Raises:
            FetchError: transport failure or non-2xx from contract-info
        """
        data_key, ts_key = self.keys(symbol)
        cached = self._read_cached(data_key, ts_key)
        if cached is not None:
            logger.info(f"Using cached expiry dates for {symbol}")
            return cached

        url = f"{self._base_url}/api/option-chain-contract-info?symbol={quote(symbol)}"
        resp = self._fetcher.get(
            url, nse_headers(f"{self._base_url}/option-chain"), timeout_ms, endpoint="contract-info"
        )
        if not resp.ok:
            raise FetchError(f"contract-info HTTP {resp.status} for symbol {symbol}")
        body = resp.body.decode("utf-8", errors="replace")
        self._write_cached(data_key, ts_key, body)
        logger.info(f"Fetched expiry dates for {symbol} ({len(body)} chars)")
        return body

    def _read_cached(self, data_key: str, ts_key: str) -> Optional[str]:
        if self._store is None:
            return None
        try:
            data = self._store.get(data_key)
            fetched_at = self._store.get(ts_key)
        except Exception as exc:
            logger.warning(f"Expiry cache read failed, fetching fresh: {type(exc).__name__}: {exc}")
            return None
        if data is None or fetched_at is None or not self.is_fresh(fetched_at):
            return None
        return data

    def _write_cached(self, data_key: str, ts_key: str, body: str) -> None:
        if self._store is None:
            return
        try:
            self._store.set(data_key, body)
            self._store.set(ts_key, iso_timestamp(self._clock()))
        except Exception as exc:
            logger.warning(f"Expiry cache write failed: {type(exc).__name__}: {exc}")
