from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Sequence

from ingestion.contracts.tick import UnifiedEvent, sort_events
from ingestion.polygon.source import PolygonRESTClient
from ingestion.quotes.normalize import PolygonQuotesNormalizer
from ingestion.quotes.source import PolygonQuotesSource
from ingestion.trades.normalize import PolygonTradesNormalizer
from ingestion.trades.source import DEFAULT_PAGE_LIMIT, PolygonTradesSource
from tickdump.exceptions.core import DecodeFailure, OutputWriteFailure
from tickdump.runtime.counter import ErrorCounter
from tickdump.runtime.report import STATUS_FAILED, STATUS_OK, SymbolResult
from tickdump.storage.archive import write_archive
from tickdump.utils.logger import (
    get_logger,
    log_fetch_failure,
    log_info,
    log_storage_failure,
)
from tickdump.utils.paths import archive_path

_DOMAIN = "ticks"

ArchiveWriteFn = Callable[[Path, Sequence[UnifiedEvent]], Path]


class SymbolWorker:
    """One symbol, one day.

    Responsibility:
        trades pages -> normalize -> append
        quotes pages -> normalize -> append
        stable sort by sip_ts -> archive

    Failure handling:
        - DecodeFailure: symbol failed, nothing written
        - OutputWriteFailure: symbol failed, tmp file discarded
        - TransportFailure: not caught; the dispatcher owns the policy
    """

    def __init__(
        self,
        *,
        client: PolygonRESTClient,
        symbol: str,
        day: str,
        output_root: str | Path,
        limit: int = DEFAULT_PAGE_LIMIT,
        errors: ErrorCounter | None = None,
        logger: logging.Logger | None = None,
        write: ArchiveWriteFn = write_archive,
    ) -> None:
        self._client = client
        self._symbol = str(symbol)
        self._day = str(day)
        self._output_root = Path(output_root)
        self._limit = int(limit)
        self._errors = errors if errors is not None else ErrorCounter()
        self._logger = logger or get_logger(f"ingestion.{_DOMAIN}.{self.__class__.__name__}")
        self._write = write
        self.n_trades = 0
        self.n_quotes = 0

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def day(self) -> str:
        return self._day

    @property
    def path(self) -> Path:
        return archive_path(self._output_root, day=self._day, symbol=self._symbol)

    def collect(self) -> list[UnifiedEvent]:
        """Merged, sorted events for the symbol. Trades precede quotes on equal sip_ts."""
        events: list[UnifiedEvent] = []

        trades = PolygonTradesSource(
            client=self._client, symbol=self._symbol, day=self._day,
            limit=self._limit, errors=self._errors, logger=self._logger,
        )
        to_trade = PolygonTradesNormalizer(symbol=self._symbol)
        for rec in trades:
            events.append(to_trade(rec))
        self.n_trades = len(events)

        quotes = PolygonQuotesSource(
            client=self._client, symbol=self._symbol, day=self._day,
            limit=self._limit, errors=self._errors, logger=self._logger,
        )
        to_quote = PolygonQuotesNormalizer(symbol=self._symbol)
        for rec in quotes:
            events.append(to_quote(rec))
        self.n_quotes = len(events) - self.n_trades

        return sort_events(events)

    def run(self) -> SymbolResult:
        t0 = time.monotonic()
        log_info(self._logger, "worker.symbol_start", symbol=self._symbol, day=self._day)

        try:
            events = self.collect()
        except DecodeFailure as exc:
            log_fetch_failure(
                self._logger,
                "worker.symbol_decode_failed",
                symbol=self._symbol,
                day=self._day,
                url=exc.url,
                page=exc.page,
                err=str(exc),
            )
            return self._result(STATUS_FAILED, error=str(exc))

        path = self.path
        try:
            self._write(path, events)
        except OutputWriteFailure as exc:
            log_storage_failure(
                self._logger,
                "worker.symbol_write_failed",
                symbol=self._symbol,
                day=self._day,
                path=exc.path,
                err=str(exc),
            )
            return self._result(STATUS_FAILED, error=str(exc))

        log_info(
            self._logger,
            "worker.symbol_stop",
            symbol=self._symbol,
            day=self._day,
            n_trades=self.n_trades,
            n_quotes=self.n_quotes,
            path=str(path),
            elapsed_ms=int((time.monotonic() - t0) * 1000),
        )
        return self._result(STATUS_OK, path=path)

    __call__ = run

    def _result(self, status, *, path: Path | None = None, error: str | None = None) -> SymbolResult:
        return SymbolResult(
            symbol=self._symbol,
            day=self._day,
            status=status,
            n_trades=self.n_trades,
            n_quotes=self.n_quotes,
            path=path,
            error=error,
        )
