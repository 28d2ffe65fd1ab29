from __future__ import annotations

import logging

import pytest

from ingestion.tickers.source import PolygonTickersSource, decode_ticker, tickers_query
from tickdump.exceptions.core import DecodeFailure
from tests.helpers.fakes_polygon import FakeResponse, FakeSession, make_client, paged_routes

DAY = "2022-12-23"
PATH = "/v3/reference/tickers"


def _source(session: FakeSession, **kw) -> PolygonTickersSource:
    return PolygonTickersSource(client=make_client(session), logger=logging.getLogger("test.tickers"), **kw)


def test_list_symbols_follows_pages_and_dedups() -> None:
    session = FakeSession(
        paged_routes(PATH, [[{"ticker": "A"}, {"ticker": "AA"}], [{"ticker": "AA"}, {"ticker": "AAPL"}]], cursor="u")
    )

    assert _source(session, limit=2).list_symbols(DAY) == ["A", "AA", "AAPL"]
    assert session.paths() == [PATH, f"{PATH}?cursor=u1"]


def test_query_params() -> None:
    q = tickers_query(DAY)
    assert q.path == PATH
    assert q.params == {
        "market": "stocks",
        "type": "CS",
        "date": DAY,
        "active": "true",
        "sort": "ticker",
        "order": "asc",
    }
    assert q.limit == 1000


def test_empty_universe_warns(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    session = FakeSession({PATH: FakeResponse(200, {"results": [], "status": "OK"})})

    assert _source(session).list_symbols(DAY) == []
    assert [r.getMessage() for r in caplog.records] == ["tickers.empty_universe"]


def test_iteration_needs_a_day() -> None:
    session = FakeSession({PATH: FakeResponse(200, {"results": [{"ticker": "X", "name": "X Corp"}]})})
    with pytest.raises(RuntimeError):
        iter(_source(session))
    recs = list(_source(session, day=DAY))
    assert recs[0].ticker == "X" and recs[0].name == "X Corp" and recs[0].active


def test_row_without_ticker_is_a_decode_failure() -> None:
    session = FakeSession({PATH: FakeResponse(200, {"results": [{"name": "nameless"}]})})
    with pytest.raises(DecodeFailure):
        _source(session).list_symbols(DAY)


def test_decode_ticker_rejects_non_bool_active() -> None:
    with pytest.raises(TypeError):
        decode_ticker({"ticker": "X", "active": "yes"})
