"""
Delta Window Resolver

Decides which call_start dates the next sync fetches: from the later
of the baseline cutoff and the most recent imported call, through today.

The most recent imported day is always fetched again. Imports are
idempotent upserts, so the overlap only costs a re-fetch, while skipping
it could leave a gap after a partially completed run.

Author: CallSync Team
Date: 2026-01-12
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Optional, Union


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive range of call_start dates to fetch."""
    start_date: date
    end_date: date

    @property
    def is_empty(self) -> bool:
        return self.start_date > self.end_date

    def contains(self, moment: Union[date, datetime, None]) -> bool:
        if moment is None:
            return False
        if isinstance(moment, datetime):
            moment = moment.date()
        return self.start_date <= moment <= self.end_date

    def as_params(self) -> Dict[str, str]:
        """startDate/endDate as YYYY-MM-DD strings for the vendor API."""
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }

    @property
    def span_days(self) -> int:
        return max(0, (self.end_date - self.start_date).days + 1)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def resolve_window(
    latest_call_start: Optional[datetime],
    baseline: date,
    today: Optional[date] = None,
) -> SyncWindow:
    """
    Compute the next fetch window.
    
    Args:
        latest_call_start: Most recent call_start stored, or None when empty
        baseline: Never fetch calls before this date
        today: Override for the current UTC date
        
    Returns:
        SyncWindow: start = max(baseline, latest stored date), end = today.
        A stored timestamp later than today is treated as today.
    """
    today = today or utc_today()

    if latest_call_start is None:
        return SyncWindow(start_date=baseline, end_date=today)

    latest = latest_call_start.date() if isinstance(latest_call_start, datetime) else latest_call_start
    latest = min(latest, today)
    return SyncWindow(start_date=max(baseline, latest), end_date=today)
