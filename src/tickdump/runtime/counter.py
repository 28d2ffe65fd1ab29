from __future__ import annotations

import threading


class ErrorCounter:
    """Failed page fetches across all workers of a run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._n = 0

    def increment(self, n: int = 1) -> int:
        with self._lock:
            self._n += int(n)
            return self._n

    @property
    def value(self) -> int:
        with self._lock:
            return self._n

    def __repr__(self) -> str:
        return f"ErrorCounter({self.value})"
