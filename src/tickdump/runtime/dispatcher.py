from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable

from tickdump.exceptions.core import FatalFetchError, TransportFailure
from tickdump.runtime.counter import ErrorCounter
from tickdump.runtime.report import (
    STATUS_FAILED,
    STATUS_NOT_STARTED,
    DayReport,
    SymbolResult,
)
from tickdump.utils.config import FetchFailurePolicy
from tickdump.utils.logger import get_logger, log_debug, log_error, log_info, log_warn

DEFAULT_CONCURRENCY = 50
_ADMIT_POLL_S = 0.2

# (symbol, day) -> zero-arg callable producing the symbol's result
Worker = Callable[[], SymbolResult]
WorkerFactory = Callable[[str, str], Worker]
ResultCallback = Callable[[SymbolResult], None]


class BoundedDispatcher:
    """Run one worker per symbol with at most `concurrency` in flight.

    Admission: a BoundedSemaphore is acquired on the dispatching thread before
    each submit and released by the worker thread in `finally`, so the number
    of running workers never exceeds `concurrency`.

    Drain: `run` returns only after every admitted worker has finished.

    Transport failures:
        abort - stop admitting, drain in-flight workers, raise FatalFetchError
        skip  - mark the symbol failed and keep going
    """

    def __init__(
        self,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        on_fetch_failure: FetchFailurePolicy = "abort",
        errors: ErrorCounter | None = None,
        stop_event: threading.Event | None = None,
        on_result: ResultCallback | None = None,
        logger: logging.Logger | None = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if on_fetch_failure not in ("abort", "skip"):
            raise ValueError(f"on_fetch_failure must be 'abort' or 'skip', got {on_fetch_failure!r}")
        self.concurrency = int(concurrency)
        self.on_fetch_failure = on_fetch_failure
        self.errors = errors if errors is not None else ErrorCounter()
        self._stop_event = stop_event
        self._on_result = on_result
        self._logger = logger or get_logger("tickdump.runtime.dispatcher")

    def run(
        self,
        day: str,
        symbols: Iterable[str],
        worker_factory: WorkerFactory,
        *,
        on_result: ResultCallback | None = None,
    ) -> DayReport:
        notify = on_result if on_result is not None else self._on_result
        gate = threading.BoundedSemaphore(self.concurrency)
        abort = threading.Event()
        fatal: list[tuple[str, TransportFailure]] = []
        fatal_lock = threading.Lock()

        ordered = list(symbols)
        futures: dict[str, Future[SymbolResult]] = {}

        def _run_one(symbol: str) -> SymbolResult:
            try:
                worker = worker_factory(symbol, day)
                try:
                    result = worker()
                except TransportFailure as exc:
                    result = SymbolResult(symbol=symbol, day=day, status=STATUS_FAILED, error=str(exc))
                    if self.on_fetch_failure == "abort":
                        with fatal_lock:
                            fatal.append((symbol, exc))
                        abort.set()
                        log_error(
                            self._logger,
                            "dispatcher.abort",
                            symbol=symbol,
                            day=day,
                            status=exc.status,
                            url=exc.url,
                        )
                    else:
                        log_warn(
                            self._logger,
                            "dispatcher.symbol_skipped",
                            symbol=symbol,
                            day=day,
                            status=exc.status,
                            url=exc.url,
                        )
                if notify is not None:
                    notify(result)
                return result
            finally:
                gate.release()

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix=f"tickdump-{day}") as pool:
            for symbol in ordered:
                if symbol in futures:
                    continue
                if not self._admit(gate, abort):
                    break
                try:
                    futures[symbol] = pool.submit(_run_one, symbol)
                except RuntimeError:
                    gate.release()
                    raise
                log_debug(self._logger, "dispatcher.admit", symbol=symbol, day=day, in_flight_cap=self.concurrency)

            # drain barrier
            wait(list(futures.values()))

        results: list[SymbolResult] = []
        seen: set[str] = set()
        for symbol in ordered:
            if symbol in seen:
                continue
            seen.add(symbol)
            fut = futures.get(symbol)
            if fut is None:
                results.append(SymbolResult(symbol=symbol, day=day, status=STATUS_NOT_STARTED))
            else:
                # unexpected worker exceptions propagate here
                results.append(fut.result())

        report = DayReport(day=day, results=results, error_count=self.errors.value, aborted=bool(fatal))
        log_info(
            self._logger,
            "dispatcher.drained",
            day=day,
            admitted=len(futures),
            aborted=report.aborted,
            error_count=report.error_count,
            **report.counts,
        )

        if fatal:
            symbol, cause = fatal[0]
            raise FatalFetchError(
                f"{day}: transport failure on {symbol}: {cause}",
                symbol=symbol,
                day=day,
                cause=cause,
                report=report,
            )
        return report

    def _admit(self, gate: threading.BoundedSemaphore, abort: threading.Event) -> bool:
        """Block for a free slot; False once the day is aborted or a stop was requested."""
        while True:
            if abort.is_set() or self._stopping():
                return False
            if gate.acquire(timeout=_ADMIT_POLL_S):
                if abort.is_set() or self._stopping():
                    gate.release()
                    return False
                return True

    def _stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()
