from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class ScanSnapshot:
    outcomes: Dict[str, int]
    kinds: Dict[str, int]
    stamps_issued: int
    rewards_redeemed: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "outcomes": dict(self.outcomes),
            "kinds": dict(self.kinds),
            "stamps_issued": self.stamps_issued,
            "rewards_redeemed": self.rewards_redeemed,
        }


class ScanObservabilityStore:
    """Collect staff scanning telemetry for diagnostics."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._outcomes: Dict[str, int] = defaultdict(int)
        self._kinds: Dict[str, int] = defaultdict(int)
        self._stamps_issued = 0
        self._rewards_redeemed = 0

    def record_outcome(self, outcome: str) -> None:
        with self._lock:
            self._outcomes[outcome] += 1

    def record_accepted(self, kind: str) -> None:
        with self._lock:
            self._outcomes["accepted"] += 1
            self._kinds[kind or "unknown"] += 1

    def record_stamps(self, count: int) -> None:
        with self._lock:
            self._outcomes["committed"] += 1
            self._stamps_issued += count

    def record_redemption(self) -> None:
        with self._lock:
            self._outcomes["committed"] += 1
            self._rewards_redeemed += 1

    def snapshot(self) -> ScanSnapshot:
        with self._lock:
            return ScanSnapshot(
                outcomes=dict(self._outcomes),
                kinds=dict(self._kinds),
                stamps_issued=self._stamps_issued,
                rewards_redeemed=self._rewards_redeemed,
            )

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._kinds.clear()
            self._stamps_issued = 0
            self._rewards_redeemed = 0


_STORE = ScanObservabilityStore()


def get_scan_store() -> ScanObservabilityStore:
    return _STORE


__all__ = ["get_scan_store", "ScanObservabilityStore", "ScanSnapshot"]
