"""
Decision Log Service.

Append-only writer for operator decisions. Entries are added to the caller's
session and flushed, never committed here: the decision is persisted by the
same transaction that applies the candidate transition it records.
"""

from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..primitives import generate_ulid, utc_now
from .models import DecisionLogModel


class DecisionLogService:
    """Service for recording and reading decision log entries.

    Usage:
        decisions = DecisionLogService(db_session)
        decisions.record(candidate_id=7, watcher_id="w-1", actor_id="user-1", decision="kill")
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        candidate_id: int,
        watcher_id: str,
        actor_id: str,
        decision: str,
        action_type: Optional[str] = None,
        action_source: str = "api",
        actor_type: str = "user",
        execution_id: Optional[str] = None,
    ) -> DecisionLogModel:
        """Append one decision entry to the current transaction.

        Args:
            candidate_id: Candidate the decision is about
            watcher_id: Owning watcher
            actor_id: Opaque id of the deciding actor
            decision: Decision verb (e.g. "kill")
            action_type: Action category, defaults to ``decision``
            action_source: Where the decision came from ("api", "cli", "email_link")
            actor_type: "user" or "system"
            execution_id: Correlation id handed back by the workflow engine

        Returns:
            The flushed DecisionLogModel
        """
        entry = DecisionLogModel(
            decision_id=generate_ulid(),
            candidate_id=candidate_id,
            watcher_id=watcher_id,
            action_type=action_type or decision,
            action_source=action_source,
            actor_type=actor_type,
            actor_id=actor_id,
            decision=decision,
            execution_id=execution_id,
            created_at=utc_now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def query_by_candidate(
        self,
        candidate_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DecisionLogModel]:
        """Get decision history for a candidate, newest first."""
        return (
            self.db.query(DecisionLogModel)
            .filter(DecisionLogModel.candidate_id == candidate_id)
            .order_by(desc(DecisionLogModel.created_at), desc(DecisionLogModel.decision_id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_execution(self, execution_id: str) -> List[DecisionLogModel]:
        """Get all decisions correlated with a workflow execution."""
        return (
            self.db.query(DecisionLogModel)
            .filter(DecisionLogModel.execution_id == execution_id)
            .order_by(desc(DecisionLogModel.created_at))
            .all()
        )
