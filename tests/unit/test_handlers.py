"""
Unit tests for the acquisition handlers.

Tests:
- CSV snapshot handlers (all-indices, equity variations)
- Option-chain handler over multiple expiries, with the daily expiry cache
- Sink failures never change a handler's result
- Broker option-chain task validation and publishing
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from nsedata.enrichment import GreeksEnricher
from nsedata.expiry import ExpiryCache
from nsedata.handlers import (
    AllIndicesHandler,
    BrokerChainHandler,
    EquityVariationsHandler,
    OptionChainHandler,
)
from nsedata.models import ChainEntry, ChainResponse, OptionLeg, Task
from nsedata.publish import SnapshotPublisher
from nsedata.router import TaskRouter
from nsedata.store import SnapshotStore
from oi_store.models import PersistContext, RunSummary

INDICES_PATH = "/api/allIndices"
EQUITY_PATH = "/api/live-analysis-variations"
CHAIN_PATH = "/api/option-chain-v3"
CONTRACT_PATH = "/api/option-chain-contract-info"
CONTRACT_INFO = {"expiryDates": ["03-Feb-2026", "10-Feb-2026", "17-Feb-2026"]}
TODAY = datetime(2026, 1, 28, 10, 0, tzinfo=timezone.utc)


class TestAllIndices:
    def test_success_publishes_and_notifies(self, fake_nse, fetcher, publisher, defaults, kv, bus):
        body = "INDEX,LAST\nNIFTY 50,25010.5\n"
        fake_nse.add(INDICES_PATH, body=body)

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(Task(kind="allindices"))

        assert result == (
            f"OK: allIndices downloaded, length={len(body)}, "
            "redisKeys=nse:allindices:current:data,nse:allindices:current:timestamp"
        )
        assert kv.get("nse:allindices:current:data") == "INDEX,LAST\nNIFTY 50,25010.5\n"
        assert bus.published[0].key == "nse:allindices:current"
        assert bus.published[0].payload["taskName"] == "allIndices"
        assert fake_nse.requests[0].url.params["csv"] == "true"

    def test_second_run_rotates(self, fake_nse, fetcher, publisher, defaults, kv):
        handler = AllIndicesHandler(fetcher, publisher, defaults)
        fake_nse.add(INDICES_PATH, body="v1")
        handler.handle(Task(kind="allindices"))
        fake_nse.add(INDICES_PATH, body="v2")
        handler.handle(Task(kind="allindices"))

        assert kv.get("nse:allindices:current:data") == "v2"
        assert kv.get("nse:allindices:previous:data") == "v1"

    def test_http_error_leaves_cache_alone(self, fake_nse, fetcher, publisher, defaults, kv, bus):
        fake_nse.add(INDICES_PATH, status=503)

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(Task(kind="allindices"))

        assert result == "Error: allIndices HTTP 503"
        assert kv.keys() == []
        assert bus.published == []

    def test_timeout_reported_as_error(self, fake_nse, fetcher, publisher, defaults):
        fake_nse.add(INDICES_PATH, exc=httpx.ReadTimeout("slow"))

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(
            Task(kind="allindices", timeout_ms=5000)
        )

        assert result.startswith("Error: allIndices timed out after 5000ms")

    def test_invalid_utf8_is_decode_error(self, fake_nse, fetcher, publisher, defaults, kv):
        fake_nse.add(INDICES_PATH, body=b"\xff\xfe\xfa")

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(Task(kind="allindices"))

        assert result.startswith("Error: allIndices payload is not valid UTF-8")
        assert kv.keys() == []

    def test_cache_failure_does_not_change_result(self, fake_nse, fetcher, defaults, bus):
        backend = MagicMock()
        backend.get.return_value = None
        backend.set.side_effect = ConnectionError("redis down")
        publisher = SnapshotPublisher(SnapshotStore(backend), bus)
        fake_nse.add(INDICES_PATH, body="a,b")

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(Task(kind="allindices"))

        assert result.startswith("OK: allIndices downloaded, length=3")

    def test_empty_body_still_published(self, fake_nse, fetcher, publisher, defaults, kv):
        fake_nse.add(INDICES_PATH, body="")

        result = AllIndicesHandler(fetcher, publisher, defaults).handle(Task(kind="allindices"))

        assert result.startswith("OK: allIndices downloaded, length=0")
        assert kv.get("nse:allindices:current:data") == ""


class TestEquityVariations:
    def test_uses_long_default_timeout(self, fake_nse, fetcher, publisher, defaults, kv):
        fake_nse.add(EQUITY_PATH, body="SYMBOL,CHANGE\nABC,5\n")

        result = EquityVariationsHandler(fetcher, publisher, defaults).handle(Task(kind="equity"))

        assert result.startswith("OK: equityData downloaded, length=20")
        assert "redisKeys=nse:equitydata:current:data" in result
        request = fake_nse.requests[0]
        assert request.extensions["timeout"]["read"] == 600.0
        assert request.url.params["index"] == "gainers"
        assert request.url.params["type"] == "allSec"

    def test_task_timeout_overrides_default(self, fake_nse, fetcher, publisher, defaults):
        fake_nse.add(EQUITY_PATH, body="x")

        EquityVariationsHandler(fetcher, publisher, defaults).handle(Task(kind="equity", timeout_ms=2000))

        assert fake_nse.requests[0].extensions["timeout"]["read"] == 2.0


@pytest.fixture
def expiry_cache(fetcher, store):
    return ExpiryCache(fetcher, store, base_url="https://nse.test", tz=timezone.utc, clock=lambda: TODAY)


@pytest.fixture
def chain_handler(fetcher, publisher, expiry_cache, defaults, sleeper):
    return OptionChainHandler(fetcher, publisher, expiry_cache, defaults, sleep=sleeper)


class TestOptionChain:
    def test_two_expiries_in_order(self, fake_nse, chain_handler, kv, bus, sleeper):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body={"records": {"data": []}}, expiry="03-Feb-2026")
        fake_nse.add(CHAIN_PATH, body={"records": {"data": [], "x": 1}}, expiry="10-Feb-2026")

        result = chain_handler.handle(Task(kind="optionchain", symbol="NIFTY", expiry_count=2, delay_ms=250))

        parts = result.split(" | ")
        assert len(parts) == 2
        assert parts[0].startswith("Expiry 03-Feb-2026: OK: optionChain downloaded for NIFTY expiry 03-Feb-2026")
        assert parts[1].startswith("Expiry 10-Feb-2026: OK: optionChain downloaded for NIFTY expiry 10-Feb-2026")
        assert "redisKeys=nse:optionchain:NIFTY:03-Feb-2026:current:data" in parts[0]
        assert kv.exists("nse:optionchain:NIFTY:03-Feb-2026:current:data")
        assert kv.exists("nse:optionchain:NIFTY:10-Feb-2026:current:data")
        assert not kv.exists("nse:optionchain:NIFTY:17-Feb-2026:current:data")
        chain_requests = [r for r in fake_nse.requests if r.url.path == CHAIN_PATH]
        assert [r.url.params["expiry"] for r in chain_requests] == ["03-Feb-2026", "10-Feb-2026"]
        assert chain_requests[0].url.params["type"] == "Indices"
        assert [n.payload["taskName"] for n in bus.published] == ["optionchain", "optionchain"]
        assert sleeper.calls == [0.25]

    def test_contract_info_cached_for_the_day(self, fake_nse, chain_handler):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body={"records": {}})

        chain_handler.handle(Task(kind="optionchain", symbol="NIFTY"))
        chain_handler.handle(Task(kind="optionchain", symbol="NIFTY"))

        assert fake_nse.calls(CONTRACT_PATH) == 1
        assert fake_nse.calls(CHAIN_PATH) == 2

    def test_defaults_symbol_and_count(self, fake_nse, chain_handler):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body={"records": {}})

        result = chain_handler.handle(Task(kind="optionchain", expiry_count=0))

        assert result.count("Expiry ") == 1
        assert fake_nse.requests[0].url.params["symbol"] == "NIFTY"

    def test_compact_expiry_normalized_in_url_not_key(self, fake_nse, chain_handler, kv):
        fake_nse.add(CONTRACT_PATH, body={"expiries": ["03FEB26"]})
        fake_nse.add(CHAIN_PATH, body={"records": {}})

        chain_handler.handle(Task(kind="optionchain", symbol="NIFTY"))

        chain_request = [r for r in fake_nse.requests if r.url.path == CHAIN_PATH][0]
        assert chain_request.url.params["expiry"] == "03-Feb-2026"
        assert kv.exists("nse:optionchain:NIFTY:03FEB26:current:data")

    def test_no_expiry_dates(self, fake_nse, chain_handler):
        fake_nse.add(CONTRACT_PATH, body={"symbol": "NIFTY"})

        result = chain_handler.handle(Task(kind="optionchain", symbol="NIFTY"))

        assert result == "Error: Could not extract expiry dates for symbol NIFTY"
        assert fake_nse.calls(CHAIN_PATH) == 0

    def test_contract_info_failure(self, fake_nse, chain_handler):
        fake_nse.add(CONTRACT_PATH, status=403)

        result = chain_handler.handle(Task(kind="optionchain", symbol="NIFTY"))

        assert result.startswith("Error: Could not extract expiry dates for symbol NIFTY - ")
        assert "HTTP 403" in result

    def test_one_expiry_failing_does_not_stop_others(self, fake_nse, chain_handler, kv):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body={"records": {}}, expiry="03-Feb-2026")
        fake_nse.add(CHAIN_PATH, status=500, expiry="10-Feb-2026")
        fake_nse.add(CHAIN_PATH, body="{not json", expiry="17-Feb-2026")

        result = chain_handler.handle(Task(kind="optionchain", symbol="NIFTY", expiry_count=3))

        first, second, third = result.split(" | ")
        assert first.startswith("Expiry 03-Feb-2026: OK")
        assert second.startswith("Expiry 10-Feb-2026: Error: optionChain HTTP 500 from URL: https://nse.test")
        assert third.startswith("Expiry 17-Feb-2026: Error: optionChain for expiry 17-Feb-2026 - ")
        assert not kv.exists("nse:optionchain:NIFTY:10-Feb-2026:current:data")

    def test_chain_is_enriched_persisted_and_summarized(
        self, fake_nse, fetcher, publisher, expiry_cache, defaults, sleeper, kv, make_analytics, nse_chain_payload
    ):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body=nse_chain_payload)
        analytics = make_analytics()
        writer = MagicMock()
        writer.persist.return_value = RunSummary(
            server_name="nse",
            underlying="NIFTY",
            underlying_ltp=25010.5,
            expiry_date="03-Feb-2026",
            created_at=TODAY,
        )
        handler = OptionChainHandler(
            fetcher,
            publisher,
            expiry_cache,
            defaults,
            enricher=GreeksEnricher(analytics, sleep=sleeper),
            writer=writer,
            sleep=sleeper,
        )

        result = handler.handle(Task(kind="optionchain", symbol="NIFTY", api_call_pause_ms=50))

        assert result.startswith("Expiry 03-Feb-2026: OK")
        assert analytics.greek_calls[:2] == [("NIFTY03FEB2624950CE", "NFO"), ("NIFTY03FEB2624950PE", "NFO")]
        assert len(analytics.greek_calls) == 6
        assert sleeper.calls == [0.05] * 6

        chain, ltp, ctx = writer.persist.call_args[0]
        assert ltp == 25010.5
        assert ctx == PersistContext(
            server_name="nse", underlying="NIFTY", expiry_date="03-Feb-2026", atm_strike=25000.0
        )
        assert chain[0].ce.greeks.delta == 0.5
        summary = json.loads(kv.get("nse:optionchain:NIFTY:03-Feb-2026:summary:current:data"))
        assert summary["underlying"] == "NIFTY"
        assert set(summary) >= {"total", "above_underlying", "below_underlying"}

    def test_out_of_range_numbers_do_not_break_the_run(self, fake_nse, chain_handler):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(
            CHAIN_PATH,
            body='{"records": {"underlyingValue": 25010.5, "data": '
            '[{"strikePrice": 25000, "CE": {"openInterest": 1e400, "lastPrice": 80}}]}}',
            expiry="03-Feb-2026",
        )
        fake_nse.add(CHAIN_PATH, body={"records": {}}, expiry="10-Feb-2026")

        result = chain_handler.handle(Task(kind="optionchain", symbol="NIFTY", expiry_count=2))

        first, second = result.split(" | ")
        assert first.startswith("Expiry 03-Feb-2026: OK")
        assert second.startswith("Expiry 10-Feb-2026: OK")

    def test_unexpected_failure_is_isolated_per_expiry(
        self, fake_nse, fetcher, publisher, expiry_cache, defaults, sleeper, nse_chain_payload
    ):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body=nse_chain_payload)
        writer = MagicMock()
        writer.persist.side_effect = [RuntimeError("db exploded"), None]
        handler = OptionChainHandler(fetcher, publisher, expiry_cache, defaults, writer=writer, sleep=sleeper)

        result = handler.handle(Task(kind="optionchain", symbol="NIFTY", expiry_count=2))

        first, second = result.split(" | ")
        assert first == "Expiry 03-Feb-2026: Error: optionChain for expiry 03-Feb-2026 - RuntimeError: db exploded"
        assert second.startswith("Expiry 10-Feb-2026: OK")
        assert writer.persist.call_count == 2

    def test_summary_cached_without_extra_notification(
        self, fake_nse, fetcher, publisher, expiry_cache, defaults, sleeper, kv, bus, nse_chain_payload
    ):
        fake_nse.add(CONTRACT_PATH, body=CONTRACT_INFO)
        fake_nse.add(CHAIN_PATH, body=nse_chain_payload)
        writer = MagicMock()
        writer.persist.return_value = RunSummary(
            server_name="nse", underlying="NIFTY", expiry_date="03-Feb-2026", created_at=TODAY
        )
        handler = OptionChainHandler(fetcher, publisher, expiry_cache, defaults, writer=writer, sleep=sleeper)

        handler.handle(Task(kind="optionchain", symbol="NIFTY", expiry_count=2))

        assert [(n.key, n.payload["taskName"]) for n in bus.published] == [
            ("nse:optionchain:NIFTY:03-Feb-2026:current", "optionchain"),
            ("nse:optionchain:NIFTY:10-Feb-2026:current", "optionchain"),
        ]
        assert kv.exists("nse:optionchain:NIFTY:03-Feb-2026:summary:current:data")
        assert kv.exists("nse:optionchain:NIFTY:10-Feb-2026:summary:current:data")


def _broker_chain(status="success"):
    return ChainResponse(
        status=status,
        underlying="NIFTY",
        underlying_ltp=25010.5,
        atm_strike=25000,
        chain=[
            ChainEntry(
                strike=25000,
                ce=OptionLeg(symbol="NIFTY30JAN2625000CE", oi=10, volume=5, lotsize=75),
                pe=OptionLeg(symbol="NIFTY30JAN2625000PE", oi=20, volume=6),
            )
        ],
    )


@pytest.fixture
def broker_router(publisher, defaults, sleeper, make_analytics):
    analytics = make_analytics(chain=_broker_chain())
    router = TaskRouter()
    router.register(
        BrokerChainHandler(analytics, publisher, defaults, enricher=GreeksEnricher(analytics, sleep=sleeper)),
        "ltp",
    )
    router.analytics = analytics
    return router


class TestBrokerChain:
    @pytest.mark.parametrize(
        "fields, message",
        [
            ({"expiry": "30JAN26", "strike_range": 5}, "Error: symbol is required"),
            ({"symbol": "NIFTY", "strike_range": 5}, "Error: expiry is required"),
            ({"symbol": "NIFTY", "expiry": "30JAN26"}, "Error: Strike Range must be a positive integer"),
            ({"symbol": "NIFTY", "expiry": "30JAN26", "strike_range": 0}, "Error: Strike Range must be a positive integer"),
        ],
    )
    def test_validation(self, broker_router, fields, message):
        assert broker_router.route(Task(kind="ltp", **fields)) == message
        assert broker_router.analytics.chain_calls == []

    def test_success_publishes_enriched_chain(self, broker_router, kv):
        result = broker_router.route(
            Task(kind="ltp", symbol="NIFTY", expiry="30jan26", strike_range=5, server_name="algo1")
        )

        assert result == "Status: success, Underlying: NIFTY, ATM Strike: 25000"
        assert broker_router.analytics.chain_calls == [("NIFTY", "NSE_INDEX", "30JAN26", 5)]
        cached = json.loads(kv.get("openalgo:algo1:NIFTY:30JAN26:optionchain:current:data"))
        assert cached["chain"][0]["ce"]["greeks"]["delta"] == 0.5

    def test_provider_error_status(self, publisher, defaults, make_analytics):
        chain = ChainResponse(status="error", message="Invalid API key")
        handler = BrokerChainHandler(make_analytics(chain=chain), publisher, defaults)

        result = handler.handle(Task(kind="ltp", symbol="NIFTY", expiry="30JAN26", strike_range=5))

        assert result == "Error: Invalid API key (Status: error)"

    def test_without_analytics(self, publisher, defaults):
        handler = BrokerChainHandler(None, publisher, defaults)
        result = handler.handle(Task(kind="ltp", symbol="NIFTY", expiry="30JAN26", strike_range=5))
        assert result == "Error: analytics client is not configured"
