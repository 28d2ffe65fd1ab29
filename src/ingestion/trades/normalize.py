from __future__ import annotations

from ingestion.contracts.normalize import Normalizer
from ingestion.contracts.tick import TRADE, TradeRecord, UnifiedEvent


class PolygonTradesNormalizer(Normalizer[TradeRecord]):
    """TradeRecord -> UnifiedEvent(kind="T").

    `sip_timestamp` becomes the shared ordering key `sip_ts`; quote fields
    stay at their zero values.
    """

    def __init__(self, *, symbol: str):
        self.symbol = str(symbol)

    def normalize(self, record: TradeRecord) -> UnifiedEvent:
        return UnifiedEvent(
            kind=TRADE,
            symbol=self.symbol,
            sip_ts=record.sip_timestamp,
            trade_participant_ts=record.participant_timestamp,
            trade_sequence=record.sequence_number,
            trade_id=record.id,
            price=record.price,
            size=record.size,
            trade_exchange=record.exchange,
            trade_tape=record.tape,
            trade_conditions=record.conditions,
            correction=record.correction,
            trf_id=record.trf_id,
            trf_ts=record.trf_timestamp,
        )

    __call__ = normalize
