"""
Database package for Doomsday Watcher.
"""

from .base import Base, DatabaseBootstrap, get_db, get_engine, transaction
from .models import CandidateModel, DecisionLogModel, ObservationEventModel, WatcherModel

__all__ = [
    "Base",
    "DatabaseBootstrap",
    "get_db",
    "get_engine",
    "transaction",
    "CandidateModel",
    "DecisionLogModel",
    "ObservationEventModel",
    "WatcherModel",
]
