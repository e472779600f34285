"""
Small helpers shared across the pipeline: timestamps, symbols, numbers.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional, Union


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def iso_timestamp(dt: Optional[datetime] = None) -> str:
    """ISO-8601 UTC instant with millisecond precision, e.g. ``2026-01-28T09:15:00.123Z``."""
    dt = (dt or utc_now()).astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(dt: Union[str, datetime]) -> datetime:
    """Parse datetime from string or return datetime object."""
    if isinstance(dt, str):
        return datetime.fromisoformat(dt.strip().replace("Z", "+00:00"))
    return dt


def normalize_symbol(symbol: str) -> str:
    """Normalize symbol to uppercase."""
    return symbol.upper().strip()


def normalize_kind(kind: str) -> str:
    """Lower-case and drop ``-``/``_`` so ``all-indices`` == ``ALL_INDICES`` == ``allIndices``."""
    return kind.strip().lower().replace("-", "").replace("_", "")


def as_float(value: Any) -> Optional[float]:
    """Finite float or None; inf/nan and out-of-range numbers count as missing."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return f if math.isfinite(f) else None


def as_int(value: Any) -> Optional[int]:
    f = as_float(value)
    return int(f) if f is not None else None


def format_strike(strike: Optional[float]) -> str:
    """``21500.0`` -> ``21500``; fractional strikes keep their decimals."""
    if strike is None:
        return "n/a"
    return str(int(strike)) if float(strike).is_integer() else f"{strike:g}"
