"""
Acquisition handlers.

Each handler walks Fetching -> Decoding -> Publishing and returns a
human-readable result string. Only the primary fetch/decode outcome shapes
that string; cache, bus and database writes are best-effort side effects.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol
from urllib.parse import quote

from loguru import logger
from pydantic import ValidationError

from oi_store import OIDeltaWriter, PersistContext

from .analytics import AnalyticsClient
from .enrichment import GreeksEnricher
from .errors import DecodeError, FetchError, InvalidTask, NoExpiryDates
from .expiry import ExpiryCache, extract_expiries, normalize_expiry
from .fetch import NSE_BASE_URL, FetchClient, nse_headers
from .models import ChainResponse, Task
from .nse_chain import parse_nse_chain
from .publish import SnapshotPublisher
from .utils import format_strike


@dataclass
class HandlerDefaults:
    base_url: str = NSE_BASE_URL
    default_timeout_ms: int = 30_000
    equity_timeout_ms: int = 600_000
    default_symbol: str = "NIFTY"
    server_name: str = "nse"
    greeks_exchange: str = "NSE_INDEX"
    api_call_pause_ms: int = 500


class Handler(Protocol):
    name: str

    def handle(self, task: Task) -> str: ...


def _decode_text(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"payload is not valid UTF-8: {e}") from e


class CsvSnapshotHandler:
    """GET a CSV endpoint and publish it as one snapshot."""

    name = ""
    base_key = ""
    path = ""
    referer_path = ""

    def __init__(self, fetcher: FetchClient, publisher: SnapshotPublisher, defaults: HandlerDefaults):
        self._fetcher = fetcher
        self._publisher = publisher
        self._defaults = defaults

    def timeout_ms(self, task: Task) -> int:
        return task.timeout_ms or self._defaults.default_timeout_ms

    def handle(self, task: Task) -> str:
        base_url = self._defaults.base_url.rstrip("/")
        url = f"{base_url}{self.path}"
        logger.info(f"Downloading {self.name} from {url}")
        try:
            resp = self._fetcher.get(
                url, nse_headers(f"{base_url}{self.referer_path}"), self.timeout_ms(task), endpoint=self.name
            )
        except FetchError as e:
            logger.error(f"{self.name} download failed: {e}")
            return f"Error: {self.name} {e}"
        if not resp.ok:
            logger.error(f"{self.name} returned HTTP {resp.status}")
            return f"Error: {self.name} HTTP {resp.status}"
        try:
            text = _decode_text(resp.body)
        except DecodeError as e:
            return f"Error: {self.name} {e}"

        if not text.strip():
            logger.warning(f"{self.name} response is empty; the API may require a browser session")
        outcome = self._publisher.publish(self.name, self.base_key, text)
        logger.success(f"{self.name} downloaded ({len(text)} chars)")
        return f"OK: {self.name} downloaded, length={len(text)}, redisKeys={outcome.redis_keys}"


class AllIndicesHandler(CsvSnapshotHandler):
    name = "allIndices"
    base_key = "nse:allindices"
    path = "/api/allIndices?csv=true"
    referer_path = "/market-data/live-market-indices"


class EquityVariationsHandler(CsvSnapshotHandler):
    name = "equityData"
    base_key = "nse:equitydata"
    path = "/api/live-analysis-variations?index=gainers&type=allSec&csv=true"
    referer_path = "/market-data/top-gainers-losers"

    def timeout_ms(self, task: Task) -> int:
        return task.timeout_ms or self._defaults.equity_timeout_ms


class _ChainPostProcessor:
    """Enrichment and persistence shared by both option-chain handlers."""

    def __init__(
        self,
        publisher: SnapshotPublisher,
        enricher: Optional[GreeksEnricher],
        writer: Optional[OIDeltaWriter],
        defaults: HandlerDefaults,
    ):
        self._publisher = publisher
        self._enricher = enricher
        self._writer = writer
        self._defaults = defaults

    def pause_ms(self, task: Task) -> int:
        if task.api_call_pause_ms is not None:
            return task.api_call_pause_ms
        return self._defaults.api_call_pause_ms

    def enrich(self, response: ChainResponse, exchange: str, task: Task) -> None:
        if not response.chain:
            return
        if self._enricher is None:
            logger.debug("Analytics client not configured, skipping Greeks enrichment")
            return
        self._enricher.enrich(response.chain, exchange, self.pause_ms(task))

    def persist(self, response: ChainResponse, ctx: PersistContext, base_key: str, summary_name: str) -> None:
        if not response.chain:
            logger.info(f"No strikes in chain for {ctx.underlying} {ctx.expiry_date}")
            return
        if self._writer is None:
            logger.debug("Relational store not configured, skipping persistence")
            return
        summary = self._writer.persist(response.chain, response.underlying_ltp, ctx)
        if summary is not None:
            self._publisher.publish(summary_name, f"{base_key}:summary", summary.to_cache_json(), notify=False)


class OptionChainHandler:
    """Option chains for the next ``expiry_count`` expiries of one symbol.

    Expiries are processed strictly in order; each one is fetched, published,
    enriched and persisted before the next is started.
    """

    name = "optionchain"

    def __init__(
        self,
        fetcher: FetchClient,
        publisher: SnapshotPublisher,
        expiry_cache: ExpiryCache,
        defaults: HandlerDefaults,
        enricher: Optional[GreeksEnricher] = None,
        writer: Optional[OIDeltaWriter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._fetcher = fetcher
        self._publisher = publisher
        self._expiry_cache = expiry_cache
        self._defaults = defaults
        self._post = _ChainPostProcessor(publisher, enricher, writer, defaults)
        self._sleep = sleep

    def handle(self, task: Task) -> str:
        symbol = task.symbol or self._defaults.default_symbol
        count = max(task.expiry_count or 1, 1)
        timeout_ms = task.timeout_ms or self._defaults.default_timeout_ms

        try:
            contract_info = self._expiry_cache.get_expiries(symbol, timeout_ms)
        except FetchError as e:
            logger.error(f"Expiry lookup for {symbol} failed: {e}")
            return f"Error: {NoExpiryDates(symbol)} - {e}"
        expiries = extract_expiries(contract_info, count)
        if not expiries:
            return f"Error: {NoExpiryDates(symbol)}"
        logger.info(f"Processing {len(expiries)} expiries for {symbol}: {expiries}")

        results = []
        for i, expiry in enumerate(expiries):
            results.append(f"Expiry {expiry}: {self._download(symbol, expiry, timeout_ms, task)}")
            if i < len(expiries) - 1 and task.delay_ms > 0:
                self._sleep(task.delay_ms / 1000.0)
        return " | ".join(results)

    def _download(self, symbol: str, expiry: str, timeout_ms: int, task: Task) -> str:
        try:
            return self._download_expiry(symbol, expiry, timeout_ms, task)
        except Exception as e:
            logger.exception(f"Option chain for {symbol} expiry {expiry} failed")
            return f"Error: optionChain for expiry {expiry} - {type(e).__name__}: {e}"

    def _download_expiry(self, symbol: str, expiry: str, timeout_ms: int, task: Task) -> str:
        base_url = self._defaults.base_url.rstrip("/")
        formatted = normalize_expiry(expiry)
        url = (
            f"{base_url}/api/option-chain-v3?type=Indices"
            f"&symbol={quote(symbol)}&expiry={quote(formatted)}"
        )
        try:
            resp = self._fetcher.get(url, nse_headers(f"{base_url}/option-chain"), timeout_ms, endpoint="optionchain")
        except FetchError as e:
            return f"Error: optionChain for expiry {expiry} - {e}"
        if not resp.ok:
            return f"Error: optionChain HTTP {resp.status} from URL: {url}"
        try:
            text = _decode_text(resp.body)
            payload = json.loads(text)
        except (DecodeError, ValueError) as e:
            return f"Error: optionChain for expiry {expiry} - {DecodeError(str(e))}"

        if not payload:
            logger.warning(f"Option chain for {symbol} {expiry} is empty; the API may require a browser session")
        base_key = f"nse:optionchain:{symbol}:{expiry}"
        outcome = self._publisher.publish(self.name, base_key, text)
        self._process_chain(payload, symbol, expiry, formatted, task, base_key)
        return (
            f"OK: optionChain downloaded for {symbol} expiry {expiry}, "
            f"length={len(text)}, redisKeys={outcome.redis_keys}"
        )

    def _process_chain(self, payload, symbol: str, expiry: str, formatted: str, task: Task, base_key: str) -> None:
        try:
            response = parse_nse_chain(payload, symbol, formatted)
        except (DecodeError, ValidationError) as e:
            logger.warning(f"Option chain for {symbol} {expiry} not decodable as a chain: {e}")
            return
        ctx = PersistContext(
            server_name=task.server_name or self._defaults.server_name,
            underlying=symbol,
            expiry_date=expiry,
            atm_strike=response.atm_strike,
        )
        self._post.enrich(response, task.exchange or self._defaults.greeks_exchange, task)
        self._post.persist(response, ctx, base_key, "optionchainSummary")


class BrokerChainHandler:
    """Option chain from the analytics provider, enriched and persisted.

    Result: ``Status: <s>, Underlying: <u>, ATM Strike: <n>``.
    """

    name = "ltp"

    def __init__(
        self,
        analytics: Optional[AnalyticsClient],
        publisher: SnapshotPublisher,
        defaults: HandlerDefaults,
        enricher: Optional[GreeksEnricher] = None,
        writer: Optional[OIDeltaWriter] = None,
    ):
        self._analytics = analytics
        self._publisher = publisher
        self._defaults = defaults
        self._post = _ChainPostProcessor(publisher, enricher, writer, defaults)

    @staticmethod
    def _validate(task: Task) -> None:
        if not task.symbol:
            raise InvalidTask("symbol is required")
        if not task.expiry or not task.expiry.strip():
            raise InvalidTask("expiry is required")
        if task.strike_range is None or task.strike_range <= 0:
            raise InvalidTask("Strike Range must be a positive integer")

    def handle(self, task: Task) -> str:
        self._validate(task)
        if self._analytics is None:
            return "Error: analytics client is not configured"
        server = task.server_name or self._defaults.server_name
        exchange = task.exchange or self._defaults.greeks_exchange
        expiry = task.expiry.strip().upper()

        try:
            resp = self._analytics.option_chain(task.symbol, exchange, expiry, task.strike_range)
        except FetchError as e:
            logger.error(f"Option chain for {task.symbol} {expiry} from {server} failed: {e}")
            return f"Error: option chain for {task.symbol} {expiry} - {e}"
        if resp.failed:
            return f"Error: {resp.error or resp.message} (Status: {resp.status})"

        base_key = f"openalgo:{server}:{task.symbol}:{expiry}:optionchain"
        ctx = PersistContext(
            server_name=server,
            underlying=resp.underlying or task.symbol,
            expiry_date=expiry,
            atm_strike=resp.atm_strike,
            underlying_prev_close=resp.underlying_prev_close,
        )
        self._post.enrich(resp, exchange, task)
        self._publisher.publish("ltpCalculator", base_key, resp.model_dump_json())
        self._post.persist(resp, ctx, base_key, "ltpCalculatorSummary")
        return f"Status: {resp.status}, Underlying: {resp.underlying}, ATM Strike: {format_strike(resp.atm_strike)}"
