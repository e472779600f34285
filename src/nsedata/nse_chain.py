"""
Decode NSE option-chain JSON (``records.data[]`` with ``CE``/``PE`` blocks)
into the chain models shared with the analytics provider.
"""

from __future__ import annotations

from typing import Any, Optional

from .errors import DecodeError
from .expiry import compact_expiry
from .models import ChainEntry, ChainResponse, OptionLeg
from .utils import as_float, format_strike


def option_symbol(underlying: str, expiry: str, strike: float, option_type: str) -> str:
    """Broker-style symbol, e.g. ``NIFTY03FEB2625000CE``."""
    return f"{underlying.upper()}{compact_expiry(expiry)}{format_strike(strike)}{option_type}"


def _first(block: dict, *names: str) -> Any:
    for name in names:
        if block.get(name) is not None:
            return block[name]
    return None


def _leg(block: dict, symbol: str) -> OptionLeg:
    ltp = as_float(_first(block, "lastPrice", "ltp"))
    change = as_float(block.get("change"))
    return OptionLeg(
        symbol=symbol,
        ltp=ltp,
        bid=as_float(_first(block, "buyPrice1", "bidprice", "bidPrice")),
        ask=as_float(_first(block, "sellPrice1", "askPrice", "askprice")),
        prev_close=round(ltp - change, 2) if ltp is not None and change is not None else None,
        volume=_first(block, "totalTradedVolume", "volume"),
        oi=_first(block, "openInterest", "oi"),
        implied_volatility=as_float(block.get("impliedVolatility")),
        identifier=block.get("identifier"),
    )


def _label(index: int, atm_index: int, option_type: str) -> str:
    distance = index - atm_index
    if distance == 0:
        return "ATM"
    in_the_money = distance < 0 if option_type == "CE" else distance > 0
    return f"{'ITM' if in_the_money else 'OTM'}{abs(distance)}"


def parse_nse_chain(payload: Any, underlying: str, expiry: str) -> ChainResponse:
    if not isinstance(payload, dict):
        raise DecodeError("option chain payload is not a JSON object")
    records = payload.get("records") if isinstance(payload.get("records"), dict) else {}
    rows = records.get("data")
    if not isinstance(rows, list):
        filtered = payload.get("filtered") if isinstance(payload.get("filtered"), dict) else {}
        rows = filtered.get("data") if isinstance(filtered.get("data"), list) else []

    ltp: Optional[float] = as_float(records.get("underlyingValue"))
    by_strike: dict[float, dict] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        strike = as_float(row.get("strikePrice"))
        if strike is None:
            continue
        by_strike[strike] = row
        if ltp is None:
            for side in ("CE", "PE"):
                if isinstance(row.get(side), dict):
                    ltp = ltp or as_float(row[side].get("underlyingValue"))

    strikes = sorted(by_strike)
    atm = min(strikes, key=lambda s: abs(s - ltp)) if strikes and ltp is not None else None
    atm_index = strikes.index(atm) if atm is not None else None

    chain: list[ChainEntry] = []
    for i, strike in enumerate(strikes):
        row = by_strike[strike]
        entry = ChainEntry(strike=strike)
        for side in ("CE", "PE"):
            block = row.get(side)
            if not isinstance(block, dict):
                continue
            leg = _leg(block, option_symbol(underlying, expiry, strike, side))
            if atm_index is not None:
                leg.label = _label(i, atm_index, side)
            setattr(entry, side.lower(), leg)
        chain.append(entry)

    return ChainResponse(
        status="success",
        underlying=underlying.upper(),
        underlying_ltp=ltp,
        expiry_date=expiry,
        atm_strike=atm,
        chain=chain,
    )
