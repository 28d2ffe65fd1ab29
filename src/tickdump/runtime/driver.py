from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from tqdm import tqdm

from ingestion.polygon.source import PolygonRESTClient
from ingestion.ticks.worker import SymbolWorker
from ingestion.tickers.source import PolygonTickersSource
from tickdump.exceptions.core import DecodeFailure, FatalFetchError, TransportFailure
from tickdump.runtime.counter import ErrorCounter
from tickdump.runtime.dispatcher import BoundedDispatcher, Worker
from tickdump.runtime.report import DayReport, SymbolResult
from tickdump.utils.config import DumpConfig
from tickdump.utils.logger import get_logger, log_error, log_heartbeat, log_info, log_warn
from tickdump.utils.paths import ensure_day_dir

_HEARTBEAT_EVERY = 100
UNIVERSE_LABEL = "<universe>"


class UniverseLister(Protocol):
    def list_symbols(self, day: str) -> list[str]: ...


@dataclass
class RunSummary:
    reports: list[DayReport] = field(default_factory=list)
    error_count: int = 0
    stopped: bool = False

    @property
    def days(self) -> list[str]:
        return [r.day for r in self.reports]


class DayDriver:
    """Days in order; for each: universe -> day dir -> bounded dispatch.

    One ErrorCounter is shared by the lister, every worker and the dispatcher,
    so `RunSummary.error_count` is the run-wide number of failed page fetches.
    A FatalFetchError from any day propagates after that day has drained.
    """

    def __init__(
        self,
        *,
        config: DumpConfig,
        client: PolygonRESTClient,
        lister: UniverseLister | None = None,
        dispatcher: BoundedDispatcher | None = None,
        errors: ErrorCounter | None = None,
        stop_event: threading.Event | None = None,
        progress: bool = True,
        logger: logging.Logger | None = None,
    ):
        self._cfg = config
        self._client = client
        self._stop_event = stop_event
        self._logger = logger or get_logger("tickdump.runtime.driver")
        self._progress = bool(progress)
        if dispatcher is not None:
            self.errors = dispatcher.errors
            self._dispatcher = dispatcher
        else:
            self.errors = errors if errors is not None else ErrorCounter()
            self._dispatcher = BoundedDispatcher(
                concurrency=config.concurrency,
                on_fetch_failure=config.on_fetch_failure,
                errors=self.errors,
                stop_event=stop_event,
            )
        self._lister = lister or PolygonTickersSource(
            client=client,
            market=config.market,
            ticker_type=config.ticker_type,
            limit=config.polygon.tickers_limit,
            errors=self.errors,
        )

    def worker_for(self, symbol: str, day: str) -> Worker:
        return SymbolWorker(
            client=self._client,
            symbol=symbol,
            day=day,
            output_root=self._cfg.output_root,
            limit=self._cfg.polygon.page_limit,
            errors=self.errors,
        ).run

    def symbols_for(self, day: str) -> list[str]:
        if self._cfg.symbols:
            return list(self._cfg.symbols)
        return self._lister.list_symbols(day)

    def run_day(self, day: str) -> DayReport:
        try:
            symbols = self.symbols_for(day)
        except TransportFailure as exc:
            if self._cfg.on_fetch_failure == "abort":
                raise FatalFetchError(
                    f"{day}: universe listing failed: {exc}",
                    symbol=UNIVERSE_LABEL,
                    day=day,
                    cause=exc,
                    report=DayReport(day=day, error_count=self.errors.value, aborted=True),
                ) from exc
            log_warn(self._logger, "driver.day_skipped", day=day, reason="universe_transport_failure", err=str(exc))
            return DayReport(day=day, error_count=self.errors.value)
        except DecodeFailure as exc:
            log_error(self._logger, "driver.day_skipped", day=day, reason="universe_decode_failure", err=str(exc))
            return DayReport(day=day, error_count=self.errors.value)

        day_dir = ensure_day_dir(self._cfg.output_root, day)
        log_info(self._logger, "driver.day_start", day=day, n_symbols=len(symbols), dir=str(day_dir))

        pbar = tqdm(total=len(symbols), desc=f"ticks {day}", unit="sym", disable=not self._progress)
        lock = threading.Lock()
        done = [0]

        def _on_result(result: SymbolResult) -> None:
            with lock:
                done[0] += 1
                pbar.update(1)
                n = done[0]
            if n % _HEARTBEAT_EVERY == 0:
                log_heartbeat(
                    self._logger,
                    "driver.progress",
                    day=day,
                    done=n,
                    total=len(symbols),
                    error_count=self.errors.value,
                )

        try:
            report = self._dispatcher.run(day, symbols, self.worker_for, on_result=_on_result)
        finally:
            pbar.close()

        log_info(self._logger, "driver.day_stop", day=day, error_count=report.error_count, **report.counts)
        return report

    def run(self, days: Iterable[str] | None = None) -> RunSummary:
        todo: Sequence[str] = list(days) if days is not None else list(self._cfg.days)
        summary = RunSummary()
        for day in todo:
            if self._stopping():
                summary.stopped = True
                log_warn(self._logger, "driver.stop_requested", day=day)
                break
            summary.reports.append(self.run_day(day))
        summary.stopped = summary.stopped or self._stopping()
        summary.error_count = self.errors.value
        log_info(
            self._logger,
            "driver.done",
            days=len(summary.reports),
            stopped=summary.stopped,
            error_count=summary.error_count,
        )
        return summary

    def _stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()
