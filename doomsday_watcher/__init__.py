"""
Doomsday Watcher

Lifecycle, scheduling and execution tracking for dead-code candidates.
"""

import importlib.metadata

__version__ = importlib.metadata.version("doomsday-watcher")

from .core import (
    CandidateStatus,
    LifecycleAction,
    ScheduleResult,
    StatusCounts,
    WatcherStatus,
    aggregate_confidence,
    compute_schedule,
    derive_watcher_status,
)
from .errors import WatcherError

__all__ = [
    "CandidateStatus",
    "LifecycleAction",
    "ScheduleResult",
    "StatusCounts",
    "WatcherError",
    "WatcherStatus",
    "aggregate_confidence",
    "compute_schedule",
    "derive_watcher_status",
]
