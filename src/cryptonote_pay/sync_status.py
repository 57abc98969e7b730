"""Sync status reporting for dashboards and health checks."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .availability import AvailabilitySummary, AvailabilityTracker
from .config import payment_method_id


@dataclass(frozen=True)
class SyncStatus:
    payment_method_id: str
    summary: Optional[AvailabilitySummary]

    @property
    def available(self) -> bool:
        return self.summary.wallet_available if self.summary is not None else False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_method_id": self.payment_method_id,
            "available": self.available,
            "summary": self.summary.to_dict() if self.summary is not None else None,
        }


class SyncSummaryProvider:
    def __init__(self, tracker: AvailabilityTracker):
        self._tracker = tracker

    def all_available(self) -> bool:
        return all(summary.daemon_available for summary in self._tracker.summaries.values())

    def get_statuses(self) -> List[SyncStatus]:
        return [
            SyncStatus(payment_method_id=payment_method_id(code), summary=summary)
            for code, summary in self._tracker.summaries.items()
        ]
