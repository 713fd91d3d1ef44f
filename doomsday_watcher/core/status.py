"""
Watcher status derivation.

A watcher's status is a function of its candidates' statuses. Rules, in
priority order:

- no candidates                      -> pending_schedule
- every candidate active             -> active
- at least one candidate active      -> partially_scheduled
- every candidate pending            -> pending_schedule
- anything else (paused / terminal)  -> keep the previously stored status
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..errors import ValidationError
from .enums import WatcherStatus


@dataclass(frozen=True)
class StatusCounts:
    """Candidate status counts for one watcher."""

    total: int
    active: int
    pending: int

    def __post_init__(self) -> None:
        if self.total < 0 or self.active < 0 or self.pending < 0:
            raise ValidationError(
                "Status counts must be non-negative",
                details={"total": self.total, "active": self.active, "pending": self.pending},
            )
        if self.active + self.pending > self.total:
            raise ValidationError(
                "active + pending cannot exceed total",
                details={"total": self.total, "active": self.active, "pending": self.pending},
            )


def derive_watcher_status(
    counts: StatusCounts,
    previous: Optional[Union[WatcherStatus, str]] = None,
) -> WatcherStatus:
    """Derive the watcher status from candidate counts."""
    if counts.total == 0:
        return WatcherStatus.PENDING_SCHEDULE
    if counts.active == counts.total:
        return WatcherStatus.ACTIVE
    if counts.active > 0:
        return WatcherStatus.PARTIALLY_SCHEDULED
    if counts.pending == counts.total:
        return WatcherStatus.PENDING_SCHEDULE

    if previous is None:
        return WatcherStatus.PENDING_SCHEDULE
    return WatcherStatus(previous)
