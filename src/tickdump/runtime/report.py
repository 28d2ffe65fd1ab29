from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

SymbolStatus = Literal["ok", "failed", "not_started"]

STATUS_OK: SymbolStatus = "ok"
STATUS_FAILED: SymbolStatus = "failed"
STATUS_NOT_STARTED: SymbolStatus = "not_started"


@dataclass(frozen=True)
class SymbolResult:
    symbol: str
    day: str
    status: SymbolStatus
    n_trades: int = 0
    n_quotes: int = 0
    path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def n_events(self) -> int:
        return self.n_trades + self.n_quotes


@dataclass
class DayReport:
    """Outcome of one dispatched day. `results` follows submission order."""

    day: str
    results: list[SymbolResult] = field(default_factory=list)
    error_count: int = 0
    aborted: bool = False

    @property
    def counts(self) -> dict[str, int]:
        c = Counter(r.status for r in self.results)
        return {s: c.get(s, 0) for s in (STATUS_OK, STATUS_FAILED, STATUS_NOT_STARTED)}

    @property
    def failed(self) -> list[SymbolResult]:
        return [r for r in self.results if r.status == STATUS_FAILED]

    def result_for(self, symbol: str) -> SymbolResult | None:
        for r in self.results:
            if r.symbol == symbol:
                return r
        return None
