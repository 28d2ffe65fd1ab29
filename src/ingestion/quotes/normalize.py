from __future__ import annotations

from ingestion.contracts.normalize import Normalizer
from ingestion.contracts.tick import QUOTE, QuoteRecord, UnifiedEvent


class PolygonQuotesNormalizer(Normalizer[QuoteRecord]):
    """QuoteRecord -> UnifiedEvent(kind="Q")."""

    def __init__(self, *, symbol: str):
        self.symbol = str(symbol)

    def normalize(self, record: QuoteRecord) -> UnifiedEvent:
        return UnifiedEvent(
            kind=QUOTE,
            symbol=self.symbol,
            sip_ts=record.sip_timestamp,
            quote_participant_ts=record.participant_timestamp,
            quote_sequence=record.sequence_number,
            bid_price=record.bid_price,
            bid_size=record.bid_size,
            bid_exchange=record.bid_exchange,
            ask_price=record.ask_price,
            ask_size=record.ask_size,
            ask_exchange=record.ask_exchange,
            quote_conditions=record.conditions,
            indicators=record.indicators,
            quote_tape=record.tape,
        )

    __call__ = normalize
