"""
Canonical enums for watcher and candidate state.
"""

from enum import Enum


class WatcherStatus(str, Enum):
    """Derived watcher status. Never set directly by an operator."""

    PENDING_SCHEDULE = "pending_schedule"
    PARTIALLY_SCHEDULED = "partially_scheduled"
    ACTIVE = "active"
    PAUSED = "paused"


class CandidateStatus(str, Enum):
    """Lifecycle status of a single candidate."""

    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"
    PENDING_REVIEW = "pending_review"
    CONFIRMED_ZOMBIE = "confirmed_zombie"
    KILLED = "killed"
    HEALTHY = "healthy"


TERMINAL_CANDIDATE_STATUSES = frozenset(
    {CandidateStatus.INACTIVE, CandidateStatus.KILLED, CandidateStatus.HEALTHY}
)


class LifecycleAction(str, Enum):
    """Operator verbs accepted by the single-candidate schedule endpoint."""

    SCHEDULE = "schedule"
    PAUSE = "pause"
    RESUME = "resume"
    OPT_OUT = "opt_out"
