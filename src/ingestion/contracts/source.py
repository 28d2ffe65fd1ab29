from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator


class Source(ABC):
    """
    Source contract.

    A Source yields raw payloads (one mapping per record) from a single
    upstream query. It owns IO only: no normalization, no ordering,
    no persistence.
    """

    @abstractmethod
    def __iter__(self) -> Iterator[Any]:
        ...
