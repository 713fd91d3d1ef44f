"""
Candidate lifecycle: single transitions, bulk scheduling and credentials.
"""

from .bulk import BulkScheduleCoordinator, BulkScheduleResult
from .controller import CandidateLifecycleController
from .credentials import CredentialResolver, SessionCredentialCache

__all__ = [
    "BulkScheduleCoordinator",
    "BulkScheduleResult",
    "CandidateLifecycleController",
    "CredentialResolver",
    "SessionCredentialCache",
]
