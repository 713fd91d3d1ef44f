"""
SQLAlchemy models for Doomsday Watcher.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..primitives import isoformat
from ..sources import decode_sources
from .base import Base, UTCDateTime

watcher_status_enum = Enum(
    "pending_schedule",
    "partially_scheduled",
    "active",
    "paused",
    name="watcher_status",
)

candidate_status_enum = Enum(
    "pending",
    "active",
    "paused",
    "inactive",
    "pending_review",
    "confirmed_zombie",
    "killed",
    "healthy",
    name="candidate_status",
)


class WatcherModel(Base):
    """A monitored repository plus its aggregate observation state."""

    __tablename__ = "watchers"

    watcher_id = Column(String(255), primary_key=True)
    watcher_name = Column(String(500), nullable=False)
    user_id = Column(String(255), nullable=False, index=True)

    # Repository identity
    repo_url = Column(Text, nullable=False)
    repo_name = Column(String(500), nullable=False, index=True)
    default_branch = Column(String(100), nullable=False, default="main")

    # Derived from candidates, never set directly
    status = Column(
        watcher_status_enum, nullable=False, default="pending_schedule", index=True
    )
    total_candidates = Column(Integer, nullable=False, default=0)

    # Qualitative risk descriptor from the creation workflow (text or JSON)
    llm_zombie_risk = Column(JSON, nullable=True)

    application_url = Column(Text, nullable=True)
    observability_urls = Column(JSON, nullable=True)

    # Tenant-stored default credential for destructive actions
    stored_credential = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, default=func.now())

    candidates = relationship(
        "CandidateModel",
        back_populates="watcher",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary. The stored credential is never exposed."""
        return {
            "watcher_id": self.watcher_id,
            "watcher_name": self.watcher_name,
            "user_id": self.user_id,
            "repo_url": self.repo_url,
            "repo_name": self.repo_name,
            "default_branch": self.default_branch,
            "status": self.status,
            "total_candidates": self.total_candidates,
            "llm_zombie_risk": self.llm_zombie_risk,
            "application_url": self.application_url,
            "observability_sources": [
                source.to_public_dict() for source in decode_sources(self.observability_urls)
            ],
            "has_stored_credential": bool(self.stored_credential),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class CandidateModel(Base):
    """One discovered code entity evaluated for removal."""

    __tablename__ = "zombie_candidates"

    candidate_id = Column(Integer, primary_key=True, autoincrement=True)
    watcher_id = Column(
        String(255),
        ForeignKey("watchers.watcher_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Entity identity
    entity_type = Column(String(50), nullable=False, index=True)
    entity_signature = Column(String(500), nullable=False)
    entity_name = Column(String(500), nullable=True)
    file_path = Column(Text, nullable=False)

    status = Column(candidate_status_enum, nullable=False, default="pending", index=True)

    # Static analysis signals
    zombie_score = Column(Integer, nullable=True)
    caller_count = Column(Integer, nullable=False, default=0)

    # Schedule
    scan_frequency_minutes = Column(Float, nullable=True)
    analysis_period_hours = Column(Integer, nullable=True)
    next_observation_at = Column(UTCDateTime, nullable=True)
    observation_end_at = Column(UTCDateTime, nullable=True)
    first_observed_at = Column(UTCDateTime, nullable=True)

    # Operator audit fields
    pause_reason = Column(Text, nullable=True)
    paused_at = Column(UTCDateTime, nullable=True)
    human_action = Column(String(50), nullable=True)
    human_action_at = Column(UTCDateTime, nullable=True)
    kill_execution_id = Column(String(255), nullable=True, index=True)

    discovered_at = Column(UTCDateTime, nullable=False, default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, default=func.now())

    watcher = relationship("WatcherModel", back_populates="candidates")

    __table_args__ = (
        UniqueConstraint(
            "watcher_id", "entity_type", "entity_signature", name="unique_candidate"
        ),
        Index("ix_candidates_watcher_status", "watcher_id", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "candidate_id": self.candidate_id,
            "watcher_id": self.watcher_id,
            "entity_type": self.entity_type,
            "entity_signature": self.entity_signature,
            "entity_name": self.entity_name,
            "file_path": self.file_path,
            "status": self.status,
            "zombie_score": self.zombie_score,
            "caller_count": self.caller_count,
            "scan_frequency_minutes": self.scan_frequency_minutes,
            "analysis_period_hours": self.analysis_period_hours,
            "next_observation_at": isoformat(self.next_observation_at),
            "observation_end_at": isoformat(self.observation_end_at),
            "first_observed_at": isoformat(self.first_observed_at),
            "pause_reason": self.pause_reason,
            "paused_at": isoformat(self.paused_at),
            "human_action": self.human_action,
            "human_action_at": isoformat(self.human_action_at),
            "kill_execution_id": self.kill_execution_id,
            "discovered_at": isoformat(self.discovered_at),
            "updated_at": isoformat(self.updated_at),
        }


class ObservationEventModel(Base):
    """Append-only observation written by the external observer."""

    __tablename__ = "observation_events"

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    candidate_id = Column(
        Integer,
        ForeignKey("zombie_candidates.candidate_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    observed_at = Column(UTCDateTime, nullable=False, default=func.now(), index=True)
    source_type = Column(String(50), nullable=True)
    http_status = Column(Integer, nullable=True)
    latency_ms = Column(Float, nullable=True)
    traffic_detected = Column(Boolean, nullable=True)
    request_count = Column(Integer, nullable=False, default=0)
    error_type = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "candidate_id": self.candidate_id,
            "observed_at": isoformat(self.observed_at),
            "source_type": self.source_type,
            "http_status": self.http_status,
            "latency_ms": self.latency_ms,
            "traffic_detected": self.traffic_detected,
            "request_count": self.request_count,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }


class DecisionLogModel(Base):
    """Append-only record of an operator decision.

    ``execution_id`` is the correlation id returned by the workflow engine
    for the request this decision triggered.
    """

    __tablename__ = "decision_log"

    decision_id = Column(String(36), primary_key=True)
    candidate_id = Column(Integer, nullable=False, index=True)
    watcher_id = Column(String(255), nullable=False, index=True)
    action_type = Column(String(50), nullable=False)
    action_source = Column(String(50), nullable=False, default="api")
    actor_type = Column(String(20), nullable=False, default="user")
    actor_id = Column(String(255), nullable=False)
    decision = Column(String(50), nullable=False)
    execution_id = Column(String(255), nullable=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=func.now(), index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "candidate_id": self.candidate_id,
            "watcher_id": self.watcher_id,
            "action_type": self.action_type,
            "action_source": self.action_source,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "decision": self.decision,
            "execution_id": self.execution_id,
            "created_at": isoformat(self.created_at),
        }
