"""
Pure scheduling, confidence and status rules.
"""

from .confidence import aggregate_confidence, score_from_risk_descriptor
from .enums import CandidateStatus, LifecycleAction, WatcherStatus
from .schedule import ScheduleResult, compute_resume, compute_schedule
from .status import StatusCounts, derive_watcher_status

__all__ = [
    "CandidateStatus",
    "LifecycleAction",
    "ScheduleResult",
    "StatusCounts",
    "WatcherStatus",
    "aggregate_confidence",
    "compute_resume",
    "compute_schedule",
    "derive_watcher_status",
    "score_from_risk_descriptor",
]
