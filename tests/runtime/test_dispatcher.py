from __future__ import annotations

import threading
import time

import pytest

from tickdump.exceptions.core import FatalFetchError, TransportFailure
from tickdump.runtime.counter import ErrorCounter
from tickdump.runtime.dispatcher import BoundedDispatcher
from tickdump.runtime.report import SymbolResult

DAY = "2022-12-23"


def _ok(symbol: str, day: str) -> SymbolResult:
    return SymbolResult(symbol=symbol, day=day, status="ok", n_trades=1)


def _http_500(symbol: str) -> TransportFailure:
    return TransportFailure(f"{symbol}: HTTP 500", url=f"https://api.polygon.io/v3/trades/{symbol}", status=500)


class _Tracker:
    def __init__(self, hold_s: float = 0.02):
        self.hold_s = hold_s
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.intervals: list[tuple[float, float]] = []
        self.started: list[str] = []

    def factory(self, symbol: str, day: str):
        def _run() -> SymbolResult:
            with self.lock:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                self.started.append(symbol)
            t0 = time.monotonic()
            time.sleep(self.hold_s)
            t1 = time.monotonic()
            with self.lock:
                self.active -= 1
                self.intervals.append((t0, t1))
            return _ok(symbol, day)

        return _run


def test_in_flight_never_exceeds_concurrency() -> None:
    tracker = _Tracker()
    symbols = [f"S{i:02d}" for i in range(24)]

    report = BoundedDispatcher(concurrency=4).run(DAY, symbols, tracker.factory)

    assert 1 <= tracker.max_active <= 4
    assert report.counts == {"ok": 24, "failed": 0, "not_started": 0}
    assert [r.symbol for r in report.results] == symbols


def test_concurrency_one_runs_strictly_one_after_another() -> None:
    tracker = _Tracker(hold_s=0.005)

    BoundedDispatcher(concurrency=1).run(DAY, ["A", "B", "C", "D"], tracker.factory)

    assert tracker.max_active == 1
    spans = sorted(tracker.intervals)
    assert all(prev_end <= nxt_start for (_, prev_end), (nxt_start, _) in zip(spans, spans[1:]))
    assert tracker.started == ["A", "B", "C", "D"]


def test_abort_stops_admission_and_raises() -> None:
    created: list[str] = []

    def factory(symbol: str, day: str):
        created.append(symbol)

        def _run() -> SymbolResult:
            if symbol == "A":
                raise _http_500(symbol)
            return _ok(symbol, day)

        return _run

    with pytest.raises(FatalFetchError) as ei:
        BoundedDispatcher(concurrency=1, on_fetch_failure="abort").run(DAY, ["A", "B", "C"], factory)

    err = ei.value
    assert err.symbol == "A" and err.day == DAY
    assert err.cause.status == 500
    assert created == ["A"]
    statuses = {r.symbol: r.status for r in err.report.results}
    assert statuses == {"A": "failed", "B": "not_started", "C": "not_started"}
    assert err.report.aborted


def test_abort_drains_workers_already_in_flight() -> None:
    a_failed = threading.Event()
    finished: list[str] = []

    def factory(symbol: str, day: str):
        def _run() -> SymbolResult:
            if symbol == "A":
                a_failed.set()
                raise _http_500(symbol)
            assert a_failed.wait(timeout=5)
            time.sleep(0.05)
            finished.append(symbol)
            return _ok(symbol, day)

        return _run

    with pytest.raises(FatalFetchError) as ei:
        BoundedDispatcher(concurrency=2).run(DAY, ["B", "A", "C"], factory)

    # B was admitted before A failed and ran to completion before run() returned
    assert finished == ["B"]
    statuses = {r.symbol: r.status for r in ei.value.report.results}
    assert statuses == {"B": "ok", "A": "failed", "C": "not_started"}


def test_skip_policy_isolates_the_failed_symbol() -> None:
    seen: list[SymbolResult] = []

    def factory(symbol: str, day: str):
        def _run() -> SymbolResult:
            if symbol == "B":
                raise _http_500(symbol)
            return _ok(symbol, day)

        return _run

    report = BoundedDispatcher(concurrency=2, on_fetch_failure="skip", on_result=seen.append).run(
        DAY, ["A", "B", "C"], factory
    )

    assert report.counts == {"ok": 2, "failed": 1, "not_started": 0}
    assert report.result_for("B").error == "B: HTTP 500"
    assert [r.symbol for r in report.failed] == ["B"]
    assert not report.aborted
    assert sorted(r.symbol for r in seen) == ["A", "B", "C"]


def test_stop_event_prevents_admission() -> None:
    stop = threading.Event()
    stop.set()
    tracker = _Tracker()

    report = BoundedDispatcher(concurrency=2, stop_event=stop).run(DAY, ["A", "B"], tracker.factory)

    assert tracker.started == []
    assert report.counts["not_started"] == 2


def test_unexpected_worker_error_propagates_after_drain() -> None:
    def factory(symbol: str, day: str):
        def _run() -> SymbolResult:
            if symbol == "A":
                raise RuntimeError("bug")
            return _ok(symbol, day)

        return _run

    with pytest.raises(RuntimeError, match="bug"):
        BoundedDispatcher(concurrency=2).run(DAY, ["A", "B"], factory)


def test_report_carries_shared_error_count() -> None:
    errors = ErrorCounter()
    errors.increment(3)
    report = BoundedDispatcher(concurrency=1, errors=errors).run(DAY, ["A"], lambda s, d: (lambda: _ok(s, d)))
    assert report.error_count == 3


def test_duplicate_symbols_run_once() -> None:
    tracker = _Tracker(hold_s=0.0)
    report = BoundedDispatcher(concurrency=2).run(DAY, ["A", "A", "B"], tracker.factory)
    assert sorted(tracker.started) == ["A", "B"]
    assert [r.symbol for r in report.results] == ["A", "B"]


def test_rejects_bad_settings() -> None:
    with pytest.raises(ValueError):
        BoundedDispatcher(concurrency=0)
    with pytest.raises(ValueError):
        BoundedDispatcher(on_fetch_failure="retry")  # type: ignore[arg-type]


def test_error_counter_is_atomic() -> None:
    errors = ErrorCounter()

    def bump() -> None:
        for _ in range(2_000):
            errors.increment()

    threads = [threading.Thread(target=bump) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors.value == 32_000
