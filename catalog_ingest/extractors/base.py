"""Shared bookkeeping for the capture extractors."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class ExtractionStats:
    """Diagnostic counters for one extraction pass.

    ``skipped`` counts whole capture entries that contributed nothing;
    ``dropped`` counts individual nodes or products discarded inside an
    otherwise usable entry.
    """

    processed: int = 0
    skipped: int = 0
    dropped: int = 0
    duplicates: int = 0
    reasons: Counter[str] = field(default_factory=Counter)

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.reasons[reason] += 1

    def drop(self, reason: str) -> None:
        self.dropped += 1
        self.reasons[reason] += 1

    def as_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "dropped": self.dropped,
            "duplicates": self.duplicates,
            "reasons": dict(sorted(self.reasons.items())),
        }


class FirstWins(Generic[K, V]):
    """Ordered collection that keeps only the first value seen for each key."""

    def __init__(self, key: Callable[[V], K]) -> None:
        self._key = key
        self._seen: set[K] = set()
        self._items: list[V] = []

    def add(self, item: V) -> bool:
        """Insert *item* unless its key was already seen; return True if kept."""

        item_key = self._key(item)
        if item_key in self._seen:
            return False
        self._seen.add(item_key)
        self._items.append(item)
        return True

    def extend(self, items: Iterable[V]) -> int:
        """Add each item in order and return how many were rejected as duplicates."""

        return sum(1 for item in items if not self.add(item))

    def __contains__(self, item_key: object) -> bool:
        return item_key in self._seen

    def __iter__(self) -> Iterator[V]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list[V]:
        return list(self._items)
