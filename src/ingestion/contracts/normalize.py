from __future__ import annotations

from typing import Protocol, TypeVar

from ingestion.contracts.tick import UnifiedEvent

R_contra = TypeVar("R_contra", contravariant=True)


class Normalizer(Protocol[R_contra]):
    """
    Normalizer contract.

    A Normalizer converts one decoded source record into a UnifiedEvent.

    It MUST:
        - be pure (no side effects)
        - copy fields only; absent optionals become zero values
        - stamp the symbol it was built for

    It MUST NOT:
        - validate, deduplicate or correct data
        - reorder or aggregate
    """

    symbol: str

    def normalize(self, record: R_contra) -> UnifiedEvent:
        ...
