"""
Pydantic models for persisted option-chain runs.
"""

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class PersistContext(BaseModel):
    """Identifies one run: which server produced the chain, for which contract."""

    server_name: str
    underlying: str
    expiry_date: str
    atm_strike: Optional[float] = None
    underlying_prev_close: Optional[float] = None

    @field_validator("underlying")
    def _upcase(cls, v):
        return v.upper()


class AggregateBucket(BaseModel):
    ce_volume: int = 0
    pe_volume: int = 0
    ce_oi: int = 0
    pe_oi: int = 0
    ce_oi_change: int = 0
    pe_oi_change: int = 0

    def add(self, other: "AggregateBucket") -> None:
        for field in AggregateBucket.model_fields:
            setattr(self, field, getattr(self, field) + getattr(other, field))


BUCKETS = ("total", "above", "below")


class RunSummary(BaseModel):
    """Per-run totals; ``above``/``below`` split strikes by the underlying's LTP."""

    server_name: str
    underlying: str
    underlying_ltp: Optional[float] = None
    expiry_date: str
    created_at: datetime
    total: AggregateBucket = Field(default_factory=AggregateBucket)
    above: AggregateBucket = Field(default_factory=AggregateBucket)
    below: AggregateBucket = Field(default_factory=AggregateBucket)

    def to_row(self) -> dict:
        row = {
            "server_name": self.server_name,
            "underlying": self.underlying,
            "underlying_ltp": self.underlying_ltp,
            "expiry_date": self.expiry_date,
            "created_at": self.created_at,
        }
        for name in BUCKETS:
            for field, value in getattr(self, name).model_dump().items():
                row[f"{name}_{field}"] = value
        return row

    def to_cache_json(self) -> str:
        return json.dumps(
            {
                "server_name": self.server_name,
                "underlying": self.underlying,
                "underlying_ltp": self.underlying_ltp,
                "expiry_date": self.expiry_date,
                "datetime": self.created_at.isoformat(),
                "total": self.total.model_dump(),
                "above_underlying": self.above.model_dump(),
                "below_underlying": self.below.model_dump(),
            }
        )
