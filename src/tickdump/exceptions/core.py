from __future__ import annotations

from typing import Any, Mapping


class TickDumpError(Exception):
    pass

class ConfigError(TickDumpError):
    pass


class RecoverableError(TickDumpError):
    """Failure scoped to one symbol; siblings keep running."""


class FatalError(TickDumpError):
    """Non-recoverable failure; the day is aborted under the default policy."""


class TransportFailure(FatalError):
    """Non-2xx response or connection error from the data source."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status: int | None = None,
        headers: Mapping[str, Any] | None = None,
        body: str | None = None,
        label: str | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status = status
        self.headers = dict(headers or {})
        self.body = body
        self.label = label


class FatalFetchError(FatalError):
    """Raised by the dispatcher when a transport failure aborts the day."""

    def __init__(
        self,
        message: str,
        *,
        symbol: str,
        day: str,
        cause: TransportFailure,
        report: Any = None,
    ):
        super().__init__(message)
        self.symbol = symbol
        self.day = day
        self.cause = cause
        # DayReport of the drained day
        self.report = report


class DecodeFailure(RecoverableError):
    """Page body could not be decoded into records."""

    def __init__(self, message: str, *, url: str, page: int, label: str | None = None):
        super().__init__(message)
        self.url = url
        self.page = page
        self.label = label


class OutputWriteFailure(RecoverableError):
    """Archive could not be created, written or closed."""

    def __init__(self, message: str, *, path: str):
        super().__init__(message)
        self.path = path
