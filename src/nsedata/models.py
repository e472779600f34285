"""
Pydantic data models for the acquisition pipeline.

``Task`` is what the outer scheduler hands to the router. The chain models
follow the OpenAlgo option-chain JSON shape, so the enriched chain can be
cached as-is and decoded NSE chains map onto the same types.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidTask
from .utils import as_int


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class Task(BaseModel):
    """One unit of work. ``retries``/``delay_ms`` are advisory to the caller's retry layer."""

    model_config = ConfigDict(extra="ignore")

    kind: Optional[str] = Field(None, validation_alias=_alias("kind", "taskType", "task_type"))
    date: Optional[str] = None
    target_path: Optional[str] = Field(
        None, validation_alias=_alias("target_path", "targetPath")
    )
    symbol: Optional[str] = None
    expiry_count: Optional[int] = Field(
        None, validation_alias=_alias("expiry_count", "expiryCount", "numberOfExpiry")
    )
    timeout_ms: Optional[int] = Field(
        None, gt=0, validation_alias=_alias("timeout_ms", "timeoutMs", "taskTimeout")
    )
    retries: int = Field(0, ge=0, validation_alias=_alias("retries", "taskretries"))
    delay_ms: int = Field(0, ge=0, validation_alias=_alias("delay_ms", "delayMs", "taskdelay"))
    api_call_pause_ms: Optional[int] = Field(
        None, ge=0, validation_alias=_alias("api_call_pause_ms", "apiCallPauseMs")
    )
    server_name: Optional[str] = Field(
        None, validation_alias=_alias("server_name", "serverName")
    )
    exchange: Optional[str] = None
    expiry: Optional[str] = None
    strike_range: Optional[int] = Field(
        None, validation_alias=_alias("strike_range", "strikeRange")
    )

    @field_validator("symbol")
    def _upcase(cls, v):
        return v.strip().upper() if v else v

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> "Task":
        if payload is None:
            raise InvalidTask("Input is null")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise InvalidTask(f"invalid task fields: {fields}") from e


class Greeks(BaseModel):
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None


class OptionLeg(BaseModel):
    """CE or PE side of one strike. Unknown upstream fields are kept for caching."""

    model_config = ConfigDict(extra="allow")

    symbol: Optional[str] = None
    label: Optional[str] = None
    ltp: Optional[float] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    prev_close: Optional[float] = None
    volume: Optional[int] = None
    oi: Optional[int] = None
    lotsize: Optional[int] = None
    tick_size: Optional[float] = None
    spot_price: Optional[float] = None
    option_price: Optional[float] = None
    implied_volatility: Optional[float] = None
    days_to_expiry: Optional[float] = None
    greeks: Optional[Greeks] = None

    @field_validator("volume", "oi", "lotsize", mode="before")
    def _whole(cls, v):
        return as_int(v)


class ChainEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    strike: float
    ce: Optional[OptionLeg] = None
    pe: Optional[OptionLeg] = None

    def legs(self):
        """(side, leg) pairs in CE-then-PE order, skipping absent legs."""
        return [(side, leg) for side, leg in (("ce", self.ce), ("pe", self.pe)) if leg]


class ChainResponse(BaseModel):
    """Option chain for one underlying and expiry."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    underlying: Optional[str] = None
    underlying_ltp: Optional[float] = None
    underlying_prev_close: Optional[float] = None
    expiry_date: Optional[str] = None
    atm_strike: Optional[float] = None
    chain: list[ChainEntry] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return (self.status or "").lower() != "success" and bool(self.error or self.message)


class GreeksResponse(BaseModel):
    """Analytics for a single instrument; Greeks may be nested or flat."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    spot_price: Optional[float] = None
    option_price: Optional[float] = None
    implied_volatility: Optional[float] = None
    days_to_expiry: Optional[float] = None
    greeks: Optional[Greeks] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    message: Optional[str] = None

    @property
    def has_analytics(self) -> bool:
        return any(
            v is not None
            for v in (self.greeks, self.spot_price, self.option_price, self.delta, self.gamma)
        )

    @property
    def succeeded(self) -> bool:
        return (self.status or "").lower() == "success"

    def resolved_greeks(self) -> Optional[Greeks]:
        if self.greeks is not None:
            return self.greeks
        flat = (self.delta, self.gamma, self.theta, self.vega)
        if all(v is None for v in flat):
            return None
        return Greeks(delta=self.delta, gamma=self.gamma, theta=self.theta, vega=self.vega)
