from __future__ import annotations

import logging
from typing import Any, Iterator, Mapping
from urllib.parse import quote

from ingestion.contracts.source import Source
from ingestion.contracts.tick import QuoteRecord
from ingestion.polygon.source import (
    PageQuery,
    Paginator,
    PolygonRESTClient,
    field_float,
    field_int,
    field_ints,
)
from tickdump.runtime.counter import ErrorCounter

DEFAULT_PAGE_LIMIT = 50_000


def decode_quote(raw: Mapping[str, Any]) -> QuoteRecord:
    return QuoteRecord(
        sip_timestamp=field_int(raw, "sip_timestamp"),
        participant_timestamp=field_int(raw, "participant_timestamp"),
        sequence_number=field_int(raw, "sequence_number"),
        bid_price=field_float(raw, "bid_price"),
        bid_size=field_int(raw, "bid_size"),
        bid_exchange=field_int(raw, "bid_exchange"),
        ask_price=field_float(raw, "ask_price"),
        ask_size=field_int(raw, "ask_size"),
        ask_exchange=field_int(raw, "ask_exchange"),
        conditions=field_ints(raw, "conditions"),
        indicators=field_ints(raw, "indicators"),
        tape=field_int(raw, "tape"),
    )


def quotes_query(symbol: str, day: str, *, limit: int = DEFAULT_PAGE_LIMIT) -> PageQuery:
    return PageQuery(
        path=f"/v3/quotes/{quote(symbol, safe='')}",
        params={"timestamp": day},
        limit=int(limit),
        label=f"{symbol}/quotes/{day}",
    )


class PolygonQuotesSource(Source):
    """All NBBO quotes of one symbol on one day, in page-arrival order."""

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

    def paginator(self) -> Paginator[QuoteRecord]:
        return Paginator(
            client=self._client,
            query=quotes_query(self._symbol, self._day, limit=self._limit),
            decode_record=decode_quote,
            errors=self._errors,
            logger=self._logger,
        )

    def __iter__(self) -> Iterator[QuoteRecord]:
        return self.paginator().records()
