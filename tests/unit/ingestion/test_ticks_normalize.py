from __future__ import annotations

import pytest

from ingestion.contracts.tick import QUOTE, TRADE, UnifiedEvent, sort_events
from ingestion.quotes.normalize import PolygonQuotesNormalizer
from ingestion.quotes.source import decode_quote, quotes_query
from ingestion.trades.normalize import PolygonTradesNormalizer
from ingestion.trades.source import decode_trade, trades_query
from tests.helpers.fakes_polygon import quote_row, trade_row


def test_trade_maps_every_field() -> None:
    raw = trade_row(
        1_671_804_000_000_000_123,
        145.2501,
        size=37,
        id="52983525029461",
        sequence_number=1_006,
        correction=1,
        trf_id=202,
        trf_timestamp=1_671_804_000_000_000_001,
    )
    ev = PolygonTradesNormalizer(symbol="AAPL")(decode_trade(raw))

    assert ev.kind == TRADE and ev.is_trade and not ev.is_quote
    assert ev.symbol == "AAPL"
    assert ev.sip_ts == 1_671_804_000_000_000_123
    assert ev.trade_participant_ts == 1_671_804_000_000_000_113
    assert ev.trade_sequence == 1_006
    assert ev.trade_id == "52983525029461"
    assert ev.price == 145.2501
    assert ev.size == 37
    assert ev.trade_exchange == 4
    assert ev.trade_tape == 1
    assert ev.trade_conditions == (12, 37)
    assert ev.correction == 1
    assert ev.trf_id == 202
    assert ev.trf_ts == 1_671_804_000_000_000_001
    # quote side stays zero
    assert ev.bid_price == 0.0 and ev.ask_size == 0 and ev.indicators == ()


def test_trade_absent_optionals_are_zero() -> None:
    ev = PolygonTradesNormalizer(symbol="X")(decode_trade({"sip_timestamp": 5, "price": 1.5, "size": 2}))
    assert (ev.trf_id, ev.trf_ts, ev.correction) == (0, 0, 0)
    assert ev.trade_conditions == ()
    assert ev.trade_id == ""


def test_quote_maps_every_field() -> None:
    raw = quote_row(2_000, bid=99.98, ask=100.02, bid_size=5, ask_size=7, sequence_number=9, indicators=[604, 1])
    ev = PolygonQuotesNormalizer(symbol="MSFT").normalize(decode_quote(raw))

    assert ev.kind == QUOTE and ev.is_quote
    assert ev.sip_ts == 2_000
    assert ev.quote_participant_ts == 1_995
    assert ev.quote_sequence == 9
    assert (ev.bid_price, ev.bid_size, ev.bid_exchange) == (99.98, 5, 11)
    assert (ev.ask_price, ev.ask_size, ev.ask_exchange) == (100.02, 7, 12)
    assert ev.quote_conditions == (1,)
    assert ev.indicators == (604, 1)
    assert ev.quote_tape == 1
    # trade side stays zero
    assert ev.price == 0.0 and ev.size == 0 and ev.trade_id == ""


def test_decoders_reject_wrong_types() -> None:
    with pytest.raises(TypeError):
        decode_trade({"sip_timestamp": 1, "price": "1.0"})
    with pytest.raises(TypeError):
        decode_quote({"sip_timestamp": 1, "indicators": "604"})


def test_sort_is_stable_on_equal_sip_ts() -> None:
    t_a = UnifiedEvent(kind=TRADE, symbol="S", sip_ts=10, price=1.0)
    t_b = UnifiedEvent(kind=TRADE, symbol="S", sip_ts=10, price=2.0)
    q_a = UnifiedEvent(kind=QUOTE, symbol="S", sip_ts=10, bid_price=3.0)
    early = UnifiedEvent(kind=QUOTE, symbol="S", sip_ts=9)

    out = sort_events([t_a, t_b, q_a, early])

    assert out == [early, t_a, t_b, q_a]
    assert all(a.sip_ts <= b.sip_ts for a, b in zip(out, out[1:]))


def test_queries_target_v3_endpoints() -> None:
    t = trades_query("BRK.A", "2022-12-23")
    q = quotes_query("BRK.A", "2022-12-23", limit=10)
    assert t.path == "/v3/trades/BRK.A"
    assert t.params == {"timestamp": "2022-12-23"}
    assert t.limit == 50_000
    assert q.path == "/v3/quotes/BRK.A"
    assert q.limit == 10
