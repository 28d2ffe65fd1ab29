from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from ingestion.contracts.source import Source
from ingestion.polygon.source import PageQuery, Paginator, PolygonRESTClient, field_str
from tickdump.runtime.counter import ErrorCounter
from tickdump.utils.logger import get_logger, log_data_integrity, log_info

DEFAULT_TICKERS_LIMIT = 1_000


@dataclass(frozen=True)
class TickerRecord:
    ticker: str
    name: str = ""
    market: str = ""
    locale: str = ""
    primary_exchange: str = ""
    type: str = ""
    active: bool = True
    currency_name: str = ""
    cik: str = ""
    composite_figi: str = ""
    share_class_figi: str = ""
    last_updated_utc: str = ""


def decode_ticker(raw: Mapping[str, Any]) -> TickerRecord:
    ticker = field_str(raw, "ticker")
    if not ticker:
        raise ValueError("ticker row without `ticker`")
    active = raw.get("active", True)
    if not isinstance(active, bool):
        raise TypeError(f"active: expected bool, got {type(active).__name__}")
    return TickerRecord(
        ticker=ticker,
        name=field_str(raw, "name"),
        market=field_str(raw, "market"),
        locale=field_str(raw, "locale"),
        primary_exchange=field_str(raw, "primary_exchange"),
        type=field_str(raw, "type"),
        active=active,
        currency_name=field_str(raw, "currency_name"),
        cik=field_str(raw, "cik"),
        composite_figi=field_str(raw, "composite_figi"),
        share_class_figi=field_str(raw, "share_class_figi"),
        last_updated_utc=field_str(raw, "last_updated_utc"),
    )


def tickers_query(
    day: str,
    *,
    market: str = "stocks",
    ticker_type: str = "CS",
    limit: int = DEFAULT_TICKERS_LIMIT,
) -> PageQuery:
    return PageQuery(
        path="/v3/reference/tickers",
        params={
            "market": market,
            "type": ticker_type,
            "date": day,
            "active": "true",
            "sort": "ticker",
            "order": "asc",
        },
        limit=int(limit),
        label=f"tickers/{market}/{ticker_type}/{day}",
    )


class PolygonTickersSource(Source):
    """Active ticker universe for a day (`/v3/reference/tickers`).

    Same pagination as trades/quotes; records are used as-is, no merge.
    """

    def __init__(
        self,
        *,
        client: PolygonRESTClient,
        market: str = "stocks",
        ticker_type: str = "CS",
        day: str | None = None,
        limit: int = DEFAULT_TICKERS_LIMIT,
        errors: ErrorCounter | None = None,
        logger: logging.Logger | None = None,
    ):
        self._client = client
        self._market = market
        self._ticker_type = ticker_type
        self._limit = int(limit)
        self._errors = errors
        self._logger = logger or get_logger("ingestion.tickers")
        self._day = str(day) if day is not None else None

    def paginator(self, day: str) -> Paginator[TickerRecord]:
        return Paginator(
            client=self._client,
            query=tickers_query(day, market=self._market, ticker_type=self._ticker_type, limit=self._limit),
            decode_record=decode_ticker,
            errors=self._errors,
            logger=self._logger,
        )

    def __iter__(self) -> Iterator[TickerRecord]:
        if self._day is None:
            raise RuntimeError("PolygonTickersSource needs a day; pass day= or use list_symbols(day)")
        return self.paginator(self._day).records()

    def list_symbols(self, day: str) -> list[str]:
        """Ordered, de-duplicated symbols active on `day`."""
        seen: set[str] = set()
        symbols: list[str] = []
        for rec in self.paginator(day).records():
            if rec.ticker in seen:
                continue
            seen.add(rec.ticker)
            symbols.append(rec.ticker)
        if not symbols:
            log_data_integrity(self._logger, "tickers.empty_universe", day=day, market=self._market)
        else:
            log_info(self._logger, "tickers.universe", day=day, n_symbols=len(symbols))
        return symbols
