"""Cancellation and deadline token passed to collaborator calls."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from catalog_ingest.errors import IngestCancelled


@dataclass
class CancelToken:
    """Cooperative cancellation switch with an optional monotonic deadline."""

    deadline: float | None = None
    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "CancelToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise IngestCancelled(f"Ingestion cancelled before {stage}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise IngestCancelled(f"Ingestion deadline passed before {stage}")

