from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class EngagementSnapshot:
    claims: Dict[str, int]
    redemptions: Dict[str, Dict[str, int]]
    group_buys: Dict[str, int]
    reservations: Dict[str, int]
    notifications: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "claims": dict(self.claims),
            "redemptions": {key: dict(value) for key, value in self.redemptions.items()},
            "groupBuys": dict(self.group_buys),
            "reservations": dict(self.reservations),
            "notifications": dict(self.notifications),
        }


class EngagementObservabilityStore:
    """Count engagement outcomes (claims, redemptions, joins, reservations) per process."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._claims: Dict[str, int] = defaultdict(int)
        self._redemption_channels: Dict[str, int] = defaultdict(int)
        self._redemption_outcomes: Dict[str, int] = defaultdict(int)
        self._group_buys: Dict[str, int] = defaultdict(int)
        self._reservations: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)

    def record_claim(self, outcome: str) -> None:
        with self._lock:
            self._claims[outcome] += 1

    def record_redemption(self, channel: str, outcome: str) -> None:
        with self._lock:
            self._redemption_outcomes[outcome] += 1
            if outcome == "success":
                self._redemption_channels[channel or "unknown"] += 1

    def record_group_event(self, event: str) -> None:
        with self._lock:
            self._group_buys[event] += 1

    def record_reservation(self, outcome: str) -> None:
        with self._lock:
            self._reservations[outcome] += 1

    def record_notification(self, status: str) -> None:
        with self._lock:
            self._notifications[status] += 1

    def snapshot(self) -> EngagementSnapshot:
        with self._lock:
            return EngagementSnapshot(
                claims=dict(self._claims),
                redemptions={
                    "by_channel": dict(self._redemption_channels),
                    "by_outcome": dict(self._redemption_outcomes),
                },
                group_buys=dict(self._group_buys),
                reservations=dict(self._reservations),
                notifications=dict(self._notifications),
            )

    def reset(self) -> None:
        with self._lock:
            self._claims.clear()
            self._redemption_channels.clear()
            self._redemption_outcomes.clear()
            self._group_buys.clear()
            self._reservations.clear()
            self._notifications.clear()


_STORE = EngagementObservabilityStore()


def get_engagement_store() -> EngagementObservabilityStore:
    return _STORE


__all__ = ["get_engagement_store", "EngagementObservabilityStore", "EngagementSnapshot"]
