"""
Unit tests for NSE option-chain decoding.
"""

import pytest

from nsedata.errors import DecodeError
from nsedata.nse_chain import option_symbol, parse_nse_chain


class TestOptionSymbol:
    def test_index_option(self):
        assert option_symbol("nifty", "03-Feb-2026", 25000.0, "CE") == "NIFTY03FEB2625000CE"

    def test_fractional_strike(self):
        assert option_symbol("ITC", "26-Feb-2026", 412.5, "PE") == "ITC26FEB26412.5PE"


class TestParseNseChain:
    def test_strikes_sorted_with_atm(self, nse_chain_payload):
        resp = parse_nse_chain(nse_chain_payload, "NIFTY", "03-Feb-2026")

        assert resp.status == "success"
        assert resp.underlying_ltp == 25010.5
        assert resp.atm_strike == 25000.0
        assert [e.strike for e in resp.chain] == [24950.0, 25000.0, 25050.0]

    def test_leg_fields(self, nse_chain_payload):
        ce = parse_nse_chain(nse_chain_payload, "NIFTY", "03-Feb-2026").chain[0].ce

        assert ce.symbol == "NIFTY03FEB2624950CE"
        assert ce.ltp == 110.0
        assert ce.bid == 109.5
        assert ce.ask == 110.5
        assert ce.prev_close == 105.0
        assert ce.volume == 1000
        assert ce.oi == 100
        assert ce.implied_volatility == 12.5

    def test_moneyness_labels(self, nse_chain_payload):
        chain = parse_nse_chain(nse_chain_payload, "NIFTY", "03-Feb-2026").chain

        assert [e.ce.label for e in chain] == ["ITM1", "ATM", "OTM1"]
        assert [e.pe.label for e in chain] == ["OTM1", "ATM", "ITM1"]

    def test_filtered_fallback_and_missing_side(self):
        payload = {"filtered": {"data": [{"strikePrice": 100, "PE": {"lastPrice": 2, "underlyingValue": 101}}]}}

        resp = parse_nse_chain(payload, "ABC", "26-Feb-2026")

        assert resp.underlying_ltp == 101.0
        assert resp.chain[0].ce is None
        assert resp.chain[0].pe.symbol == "ABC26FEB26100PE"

    def test_empty_payload(self):
        resp = parse_nse_chain({}, "NIFTY", "03-Feb-2026")
        assert resp.chain == []
        assert resp.atm_strike is None

    def test_non_object_rejected(self):
        with pytest.raises(DecodeError):
            parse_nse_chain([1, 2], "NIFTY", "03-Feb-2026")
