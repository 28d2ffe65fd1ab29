from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, Mapping, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit

import requests
from requests.adapters import HTTPAdapter

from tickdump.exceptions.core import DecodeFailure, TransportFailure
from tickdump.runtime.counter import ErrorCounter
from tickdump.utils.logger import (
    get_logger,
    log_data_integrity,
    log_debug,
    log_fetch_failure,
    redact_url,
)


"""Polygon v3 REST pagination.

Every list endpoint answers `{"results": [...], "next_url": "..."}`.
An empty or absent `next_url` marks the last page. `next_url` is absolute but
only its path+query is reused: the host part has been seen with a duplicated
`:443` port, so it is rebuilt from the configured base URL.
"""

DEFAULT_BASE_URL = "https://api.polygon.io"
DEFAULT_TIMEOUT_S = 30.0
_BODY_LOG_CHARS = 2_000
_CREDENTIAL_PARAM = "apiKey"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

K = TypeVar("K")

RecordDecoder = Callable[[Mapping[str, Any]], K]


# ---------------------------------------------------------------------------
# Field coercion (shared by the record decoders)
# ---------------------------------------------------------------------------

def field_int(raw: Mapping[str, Any], key: str) -> int:
    """Integer field; absent/null -> 0. Integral floats are accepted.

    Values must fit in int64, the archive column type.
    """
    v = raw.get(key)
    if v is None:
        return 0
    if isinstance(v, bool):
        raise TypeError(f"{key}: expected int, got bool")
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    if not isinstance(v, int):
        raise TypeError(f"{key}: expected int, got {type(v).__name__} {v!r}")
    if not _INT64_MIN <= v <= _INT64_MAX:
        raise ValueError(f"{key}: {v} does not fit in int64")
    return v


def field_float(raw: Mapping[str, Any], key: str) -> float:
    v = raw.get(key)
    if v is None:
        return 0.0
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise TypeError(f"{key}: expected number, got {type(v).__name__} {v!r}")
    return float(v)


def field_str(raw: Mapping[str, Any], key: str) -> str:
    v = raw.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise TypeError(f"{key}: expected str, got {type(v).__name__} {v!r}")
    return v


def field_ints(raw: Mapping[str, Any], key: str) -> tuple[int, ...]:
    v = raw.get(key)
    if v is None:
        return ()
    if not isinstance(v, list):
        raise TypeError(f"{key}: expected list, got {type(v).__name__}")
    return tuple(field_int({key: x}, key) for x in v)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class PolygonRESTClient:
    """Thin `requests.Session` wrapper: base URL, credential, explicit timeout.

    No retries: the adapter is mounted with `max_retries=0`.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        pool_size: int = 10,
        session: requests.Session | None = None,
    ):
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        self._api_key = str(api_key)
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> float:
        return self._timeout

    def url_for(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self._base_url + path

    def get(self, path: str, params: Mapping[str, Any] | None = None) -> requests.Response:
        """GET `<base_url><path>`; `path` may already carry a query string."""
        q: dict[str, Any] = dict(params or {})
        q[_CREDENTIAL_PARAM] = self._api_key
        return self._session.get(self.url_for(path), params=q, timeout=self._timeout)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "PolygonRESTClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def cursor_path(next_url: str) -> str:
    """Reduce an absolute `next_url` to its request path+query.

    Any credential already embedded in the cursor is dropped; the client
    appends its own.
    """
    parts = urlsplit(next_url)
    pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != _CREDENTIAL_PARAM]
    path = parts.path or "/"
    if pairs:
        return f"{path}?{urlencode(pairs)}"
    return path


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageQuery:
    """First request of a traversal. `limit` is also sent as a query param."""

    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    limit: int = 50_000
    label: str = ""


@dataclass(frozen=True)
class Page(Generic[K]):
    number: int
    url: str
    status: int
    headers: Mapping[str, str]
    results: list[K]
    next_url: str | None
    suspected_truncation: bool = False

    @property
    def is_last(self) -> bool:
        return not self.next_url


class Paginator(Generic[K]):
    """Follow one query's cursor chain until it is exhausted.

    Iterating yields `Page[K]` lazily, one GET per page. A Paginator can be
    iterated once; build a new one to traverse again.

    Failure semantics:
        - non-2xx / connection error -> TransportFailure (fatal for the day
          under the default dispatcher policy)
        - undecodable body            -> DecodeFailure (symbol-scoped)
        - full page without cursor    -> warning only, traversal ends
    Both failure kinds increment the shared ErrorCounter.
    """

    def __init__(
        self,
        *,
        client: PolygonRESTClient,
        query: PageQuery,
        decode_record: RecordDecoder[K],
        errors: ErrorCounter | None = None,
        logger: logging.Logger | None = None,
    ):
        if query.limit <= 0:
            raise ValueError(f"limit must be > 0, got {query.limit}")
        self._client = client
        self._query = query
        self._decode_record = decode_record
        self._errors = errors if errors is not None else ErrorCounter()
        self._logger = logger or get_logger("ingestion.paginator")
        self._started = False
        self.pages_fetched = 0
        self.records_seen = 0

    def __iter__(self) -> Iterator[Page[K]]:
        if self._started:
            raise RuntimeError(f"Paginator for {self._query.label or self._query.path} already consumed")
        self._started = True
        return self._pages()

    def records(self) -> Iterator[K]:
        for page in self:
            yield from page.results

    # ------------------------------------------------------------------

    def _pages(self) -> Iterator[Page[K]]:
        q = self._query
        path: str = q.path
        params: dict[str, Any] | None = {**q.params, "limit": q.limit}
        number = 0

        while True:
            number += 1
            t0 = time.monotonic()
            resp = self._fetch(path, params, number)
            results, next_url = self._decode(resp, number)
            self.pages_fetched += 1
            self.records_seen += len(results)

            log_debug(
                self._logger,
                "paginator.page",
                label=q.label,
                page=number,
                n_results=len(results),
                has_next=bool(next_url),
                latency_ms=int((time.monotonic() - t0) * 1000),
            )

            truncated = len(results) == q.limit and not next_url
            if truncated:
                log_data_integrity(
                    self._logger,
                    "paginator.suspected_truncation",
                    label=q.label,
                    url=redact_url(_response_url(resp, self._client.url_for(path))),
                    page=number,
                    n_results=len(results),
                    limit=q.limit,
                    headers=dict(resp.headers),
                )

            yield Page(
                number=number,
                url=_response_url(resp, self._client.url_for(path)),
                status=int(resp.status_code),
                headers=dict(resp.headers),
                results=results,
                next_url=next_url,
                suspected_truncation=truncated,
            )

            if not next_url:
                return
            path = cursor_path(next_url)
            params = None

    def _fetch(self, path: str, params: Mapping[str, Any] | None, number: int) -> requests.Response:
        url = self._client.url_for(path)
        try:
            resp = self._client.get(path, params)
        except requests.RequestException as exc:
            self._errors.increment()
            log_fetch_failure(
                self._logger,
                "paginator.transport_failure",
                label=self._query.label,
                url=redact_url(url),
                page=number,
                err_type=type(exc).__name__,
                err=str(exc),
            )
            raise TransportFailure(
                f"{self._query.label}: request failed: {type(exc).__name__}: {exc}",
                url=redact_url(url),
                label=self._query.label,
            ) from exc

        status = int(resp.status_code)
        if not 200 <= status < 300:
            self._errors.increment()
            body = _safe_text(resp)
            headers = dict(resp.headers)
            shown = redact_url(_response_url(resp, url))
            log_fetch_failure(
                self._logger,
                "paginator.transport_failure",
                label=self._query.label,
                url=shown,
                page=number,
                status=status,
                body=body[:_BODY_LOG_CHARS],
                headers=headers,
            )
            raise TransportFailure(
                f"{self._query.label}: HTTP {status} for {shown}",
                url=shown,
                status=status,
                headers=headers,
                body=body,
                label=self._query.label,
            )
        return resp

    def _decode(self, resp: requests.Response, number: int) -> tuple[list[K], str | None]:
        url = redact_url(_response_url(resp, self._client.url_for(self._query.path)))
        try:
            body = resp.json()
            if not isinstance(body, Mapping):
                raise TypeError(f"page body must be an object, got {type(body).__name__}")
            rows = body.get("results")
            if rows is None:
                rows = []
            if not isinstance(rows, list):
                raise TypeError(f"results must be a list, got {type(rows).__name__}")
            next_url = body.get("next_url") or None
            if next_url is not None and not isinstance(next_url, str):
                raise TypeError(f"next_url must be a string, got {type(next_url).__name__}")
            results: list[K] = []
            for row in rows:
                if not isinstance(row, Mapping):
                    raise TypeError(f"result row must be an object, got {type(row).__name__}")
                results.append(self._decode_record(row))
        except (ValueError, TypeError, KeyError) as exc:
            self._errors.increment()
            log_fetch_failure(
                self._logger,
                "paginator.decode_failure",
                label=self._query.label,
                url=url,
                page=number,
                err_type=type(exc).__name__,
                err=str(exc),
            )
            raise DecodeFailure(
                f"{self._query.label}: page {number} could not be decoded: {exc}",
                url=url,
                page=number,
                label=self._query.label,
            ) from exc
        return results, next_url


def _response_url(resp: Any, fallback: str) -> str:
    url = getattr(resp, "url", None)
    return str(url) if url else fallback


def _safe_text(resp: requests.Response) -> str:
    try:
        return resp.text
    except (UnicodeDecodeError, requests.RequestException):
        return "<unreadable body>"
