from __future__ import annotations

import logging
from typing import Any, Iterator, Mapping
from urllib.parse import quote

from ingestion.contracts.source import Source
from ingestion.contracts.tick import TradeRecord
from ingestion.polygon.source import (
    PageQuery,
    Paginator,
    PolygonRESTClient,
    field_float,
    field_int,
    field_ints,
    field_str,
)
from tickdump.runtime.counter import ErrorCounter

DEFAULT_PAGE_LIMIT = 50_000


def decode_trade(raw: Mapping[str, Any]) -> TradeRecord:
    """Polygon v3 trade row -> TradeRecord. Wrong field types raise TypeError."""
    return TradeRecord(
        sip_timestamp=field_int(raw, "sip_timestamp"),
        participant_timestamp=field_int(raw, "participant_timestamp"),
        sequence_number=field_int(raw, "sequence_number"),
        id=field_str(raw, "id"),
        price=field_float(raw, "price"),
        size=field_int(raw, "size"),
        exchange=field_int(raw, "exchange"),
        tape=field_int(raw, "tape"),
        conditions=field_ints(raw, "conditions"),
        correction=field_int(raw, "correction"),
        trf_id=field_int(raw, "trf_id"),
        trf_timestamp=field_int(raw, "trf_timestamp"),
    )


def trades_query(symbol: str, day: str, *, limit: int = DEFAULT_PAGE_LIMIT) -> PageQuery:
    return PageQuery(
        path=f"/v3/trades/{quote(symbol, safe='')}",
        params={"timestamp": day},
        limit=int(limit),
        label=f"{symbol}/trades/{day}",
    )


class PolygonTradesSource(Source):
    """All trades of one symbol on one day, in page-arrival order.

    Every iteration starts a fresh traversal.
    """

    def __init__(
        self,
        *,
        client: PolygonRESTClient,
        symbol: str,
        day: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        errors: ErrorCounter | None = None,
        logger: logging.Logger | None = None,
    ):
        self._client = client
        self._symbol = str(symbol)
        self._day = str(day)
        self._limit = int(limit)
        self._errors = errors
        self._logger = logger

    @property
    def symbol(self) -> str:
        return self._symbol

    def paginator(self) -> Paginator[TradeRecord]:
        return Paginator(
            client=self._client,
            query=trades_query(self._symbol, self._day, limit=self._limit),
            decode_record=decode_trade,
            errors=self._errors,
            logger=self._logger,
        )

    def __iter__(self) -> Iterator[TradeRecord]:
        return self.paginator().records()
