from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Literal, Mapping

EventKind = Literal["T", "Q"]

TRADE: EventKind = "T"
QUOTE: EventKind = "Q"


@dataclass(frozen=True)
class TradeRecord:
    """One row of `/v3/trades/{ticker}` results, field names as served.

    Timestamps are nanosecond epoch ints.
    """

    sip_timestamp: int
    participant_timestamp: int = 0
    sequence_number: int = 0
    id: str = ""
    price: float = 0.0
    size: int = 0
    exchange: int = 0
    tape: int = 0
    conditions: tuple[int, ...] = ()
    correction: int = 0
    trf_id: int = 0
    trf_timestamp: int = 0


@dataclass(frozen=True)
class QuoteRecord:
    """One row of `/v3/quotes/{ticker}` results, field names as served."""

    sip_timestamp: int
    participant_timestamp: int = 0
    sequence_number: int = 0
    bid_price: float = 0.0
    bid_size: int = 0
    bid_exchange: int = 0
    ask_price: float = 0.0
    ask_size: int = 0
    ask_exchange: int = 0
    conditions: tuple[int, ...] = ()
    indicators: tuple[int, ...] = ()
    tape: int = 0


@dataclass(frozen=True)
class UnifiedEvent:
    """
    Merged trade/quote event.

    This is the only object written into a symbol archive.

    Semantics:
        - `kind`     : "T" (trade) or "Q" (quote)
        - `symbol`   : ticker the event belongs to
        - `sip_ts`   : SIP timestamp (epoch ns int), the ordering key for both kinds

    Trade fields are prefixed `trade_`/`trf_`, quote fields `quote_`/`bid_`/`ask_`.
    Fields belonging to the other kind hold zero values.
    """

    kind: EventKind
    symbol: str
    sip_ts: int

    # --- trade ---
    trade_participant_ts: int = 0
    trade_sequence: int = 0
    trade_id: str = ""
    price: float = 0.0
    size: int = 0
    trade_exchange: int = 0
    trade_tape: int = 0
    trade_conditions: tuple[int, ...] = ()
    correction: int = 0
    trf_id: int = 0
    trf_ts: int = 0

    # --- quote ---
    quote_participant_ts: int = 0
    quote_sequence: int = 0
    bid_price: float = 0.0
    bid_size: int = 0
    bid_exchange: int = 0
    ask_price: float = 0.0
    ask_size: int = 0
    ask_exchange: int = 0
    quote_conditions: tuple[int, ...] = ()
    indicators: tuple[int, ...] = ()
    quote_tape: int = 0

    @property
    def is_trade(self) -> bool:
        return self.kind == TRADE

    @property
    def is_quote(self) -> bool:
        return self.kind == QUOTE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UnifiedEvent":
        kw: dict[str, Any] = {}
        for f in fields(cls):
            v = row.get(f.name)
            if v is None:
                continue
            if f.name in _TUPLE_FIELDS:
                v = tuple(int(x) for x in v)
            kw[f.name] = v
        return cls(**kw)


_TUPLE_FIELDS = frozenset({"trade_conditions", "quote_conditions", "indicators"})


def sort_events(events: list[UnifiedEvent]) -> list[UnifiedEvent]:
    """Order by `sip_ts`; equal timestamps keep their append order."""
    # list.sort is guaranteed stable
    return sorted(events, key=lambda e: e.sip_ts)
