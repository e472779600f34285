"""
Analytics provider interface and its HTTP adapter.

The pipeline only depends on ``AnalyticsClient``; ``OpenAlgoClient`` talks to
an OpenAlgo-compatible REST server (JSON POST bodies carrying ``apikey``).
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
from loguru import logger
from pydantic import ValidationError

from .errors import EnrichmentError, FetchError
from .models import ChainResponse, GreeksResponse


class AnalyticsClient(Protocol):
    def option_chain(
        self, symbol: str, exchange: str, expiry: str, strike_range: int
    ) -> ChainResponse: ...

    def option_greeks(self, symbol: str, exchange: str) -> GreeksResponse: ...


class OpenAlgoClient:
    """Sync client for ``/api/v1/optionchain`` and ``/api/v1/optiongreeks``.

    Transport failures raise ``FetchError`` for chains and ``EnrichmentError``
    for Greeks. Error statuses with a JSON body are returned as data; the
    caller inspects ``status``/``message``.
    """

    def __init__(
        self,
        host: str,
        api_key: str,
        timeout_s: float = 30.0,
        connect_timeout_s: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.host = host.rstrip("/")
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_s, connect=connect_timeout_s)
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.host,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _post(self, path: str, body: dict) -> dict:
        payload = {"apikey": self._api_key, **body}
        resp = self._http().post(path, json=payload)
        try:
            data = resp.json()
        except ValueError as e:
            raise ValueError(f"{path} HTTP {resp.status_code}: body is not JSON") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path} HTTP {resp.status_code}: expected a JSON object")
        if resp.status_code >= 400 and "status" not in data:
            data = {**data, "status": "error", "message": data.get("message") or f"HTTP {resp.status_code}"}
        return data

    def option_chain(
        self, symbol: str, exchange: str, expiry: str, strike_range: int
    ) -> ChainResponse:
        body = {
            "underlying": symbol,
            "exchange": exchange,
            "expiry_date": expiry,
            "strike_count": strike_range,
        }
        try:
            data = self._post("/api/v1/optionchain", body)
            return ChainResponse.model_validate(data)
        except httpx.HTTPError as e:
            raise FetchError(f"optionchain request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise FetchError(f"optionchain response unreadable: {e}") from e

    def option_greeks(self, symbol: str, exchange: str) -> GreeksResponse:
        try:
            data = self._post("/api/v1/optiongreeks", {"symbol": symbol, "exchange": exchange})
            return GreeksResponse.model_validate(data)
        except httpx.HTTPError as e:
            raise EnrichmentError(f"optiongreeks {symbol}: {e}") from e
        except (ValueError, ValidationError) as e:
            raise EnrichmentError(f"optiongreeks {symbol}: {e}") from e

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.debug(f"Closed analytics client for {self.host}")
