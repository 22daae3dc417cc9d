"""Bounded, device-local record of recent scan attempts."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, Iterator

from cafe_cards.core.settings import settings


class ActivityStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ScanActivity:
    status: ActivityStatus
    message: str
    customer_name: str | None = None
    card_id: str | None = None
    stamps_added: int | None = None
    pending_sync: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ScanActivityLog:
    """Newest-first list of scan attempts, capped at ``limit`` entries.

    Entries are never reconciled with the store: a failed write flagged as
    ``pending_sync`` stays in the log even though nothing was persisted.
    """

    def __init__(self, limit: int | None = None) -> None:
        self._limit = limit or settings.scan_activity_log_limit
        self._entries: Deque[ScanActivity] = deque(maxlen=self._limit)

    @property
    def limit(self) -> int:
        return self._limit

    def record(self, activity: ScanActivity) -> ScanActivity:
        self._entries.appendleft(activity)
        return activity

    def entries(self) -> list[ScanActivity]:
        return list(self._entries)

    def latest(self) -> ScanActivity | None:
        return self._entries[0] if self._entries else None

    def pending_sync(self) -> list[ScanActivity]:
        return [entry for entry in self._entries if entry.pending_sync]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScanActivity]:
        return iter(list(self._entries))


__all__ = ["ActivityStatus", "ScanActivity", "ScanActivityLog"]
