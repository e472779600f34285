"""
Bounded HTTP retrieval against the NSE web API.

One attempt per call: a fixed connect timeout, a per-request read timeout,
redirects followed. Transport failures raise ``FetchError``; non-2xx
responses come back as data so handlers can report the status code.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx
from loguru import logger

from .errors import FetchError
from .metrics import metrics_registry

NSE_BASE_URL = "https://www.nseindia.com"
INDICES_REFERER = f"{NSE_BASE_URL}/market-data/live-market-indices"
OPTION_CHAIN_REFERER = f"{NSE_BASE_URL}/option-chain"

_BROWSER_HEADERS = {
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9,hi;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
    ),
    "X-Requested-With": "XMLHttpRequest",
    "sec-ch-ua": '"Not(A:Brand";v="8", "Chromium";v="144", "Google Chrome";v="144"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin",
}


def nse_headers(referer: str) -> dict[str, str]:
    """Browser-like header set the NSE API expects, with the page-specific Referer."""
    headers = dict(_BROWSER_HEADERS)
    headers["Referer"] = referer
    return headers


@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: bytes
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def length(self) -> int:
        return len(self.body)


class FetchClient:
    """Synchronous httpx wrapper; the underlying client is created on first use.

    Args:
        connect_timeout_s: TCP connect timeout applied to every request
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        connect_timeout_s: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
        metrics=metrics_registry,
    ):
        self._connect_timeout_s = connect_timeout_s
        self._transport = transport
        self._metrics = metrics
        self._client: Optional[httpx.Client] = None

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                follow_redirects=True,
                timeout=httpx.Timeout(30.0, connect=self._connect_timeout_s),
                transport=self._transport,
            )
        return self._client

    def get(
        self,
        url: str,
        headers: Mapping[str, str],
        timeout_ms: int,
        endpoint: str = "nse",
    ) -> FetchResponse:
        timeout = httpx.Timeout(timeout_ms / 1000.0, connect=self._connect_timeout_s)
        started = time.perf_counter()
        try:
            resp = self._http().get(url, headers=dict(headers), timeout=timeout)
        except httpx.TimeoutException as e:
            self._metrics.fetch_total.labels(endpoint=endpoint, outcome="timeout").inc()
            logger.warning(f"Fetch timed out after {timeout_ms}ms: {url}")
            raise FetchError(f"timed out after {timeout_ms}ms ({type(e).__name__})") from e
        except httpx.HTTPError as e:
            self._metrics.fetch_total.labels(endpoint=endpoint, outcome="error").inc()
            logger.warning(f"Fetch failed: {url}: {type(e).__name__}: {e}")
            raise FetchError(str(e) or type(e).__name__) from e
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self._metrics.fetch_latency_ms.labels(endpoint=endpoint).observe(elapsed_ms)

        outcome = "ok" if 200 <= resp.status_code < 300 else "http_error"
        self._metrics.fetch_total.labels(endpoint=endpoint, outcome=outcome).inc()
        logger.debug(f"GET {url} -> {resp.status_code} ({len(resp.content)} bytes)")
        return FetchResponse(status=resp.status_code, body=resp.content, url=str(resp.url))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "FetchClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
