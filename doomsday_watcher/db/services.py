"""
Database services for Doomsday Watcher.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import case, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.confidence import aggregate_confidence
from ..core.enums import CandidateStatus, WatcherStatus
from ..core.status import StatusCounts, derive_watcher_status
from ..errors import ConflictError, NotFoundError, OwnershipError
from ..primitives import isoformat, utc_now
from ..schemas import WatcherRegistration
from ..sources import ObservabilitySource, decode_sources, encode_sources
from .base import transaction
from .models import CandidateModel, ObservationEventModel, WatcherModel

logger = structlog.get_logger()

HIGH_RISK_SCORE = 70
MEDIUM_RISK_SCORE = 50


class WatcherService:
    """Service for watchers and their aggregate state."""

    def __init__(self, db: Session):
        self.db = db

    def get_watcher(self, watcher_id: str) -> Optional[WatcherModel]:
        return self.db.get(WatcherModel, watcher_id)

    def get_owned(self, watcher_id: str, user_id: str) -> WatcherModel:
        """Get a watcher owned by ``user_id``.

        Raises:
            NotFoundError: no such watcher
            OwnershipError: the watcher belongs to someone else
        """
        watcher = self.get_watcher(watcher_id)
        if watcher is None:
            raise NotFoundError(f"Watcher {watcher_id} not found", {"watcher_id": watcher_id})
        if watcher.user_id != user_id:
            raise OwnershipError(
                "Watcher is not owned by the caller", {"watcher_id": watcher_id}
            )
        return watcher

    def get_owned_candidate(self, candidate_id: int, user_id: str) -> CandidateModel:
        """Get a candidate whose watcher is owned by ``user_id``."""
        row = self.db.execute(
            select(CandidateModel, WatcherModel.user_id)
            .join(WatcherModel, CandidateModel.watcher_id == WatcherModel.watcher_id)
            .where(CandidateModel.candidate_id == candidate_id)
        ).first()
        if row is None:
            raise NotFoundError(
                f"Candidate {candidate_id} not found", {"candidate_id": candidate_id}
            )
        candidate, owner = row
        if owner != user_id:
            raise OwnershipError(
                "Candidate is not owned by the caller", {"candidate_id": candidate_id}
            )
        return candidate

    def status_counts(self, watcher_id: str) -> StatusCounts:
        """Count candidates per status with one grouped query."""
        rows = self.db.execute(
            select(CandidateModel.status, func.count())
            .where(CandidateModel.watcher_id == watcher_id)
            .group_by(CandidateModel.status)
        ).all()
        by_status = {status: count for status, count in rows}
        return StatusCounts(
            total=sum(by_status.values()),
            active=by_status.get(CandidateStatus.ACTIVE.value, 0),
            pending=by_status.get(CandidateStatus.PENDING.value, 0),
        )

    def recompute_status(self, watcher_id: str) -> WatcherStatus:
        """Re-derive and store the watcher status from its candidates.

        Always a full read-aggregate-write; never an increment. Runs in the
        caller's transaction.
        """
        self.db.flush()
        watcher = self.get_watcher(watcher_id)
        if watcher is None:
            raise NotFoundError(f"Watcher {watcher_id} not found", {"watcher_id": watcher_id})

        counts = self.status_counts(watcher_id)
        status = derive_watcher_status(counts, previous=watcher.status)

        watcher.status = status.value
        watcher.total_candidates = counts.total
        watcher.updated_at = utc_now()
        self.db.flush()

        logger.debug(
            "watcher_status_recomputed",
            watcher_id=watcher_id,
            status=status.value,
            total=counts.total,
            active=counts.active,
            pending=counts.pending,
        )
        return status

    def register_from_workflow(self, registration: WatcherRegistration) -> WatcherModel:
        """Create a watcher and its candidates from the creation workflow's output."""
        if self.get_watcher(registration.watcher_id) is not None:
            raise ConflictError(
                f"Watcher {registration.watcher_id} already exists",
                {"watcher_id": registration.watcher_id},
            )

        seen = set()
        for candidate in registration.candidates:
            identity = (candidate.entity_type, candidate.entity_signature)
            if identity in seen:
                raise ConflictError(
                    "Duplicate candidate identity",
                    {"entity_type": identity[0], "entity_signature": identity[1]},
                )
            seen.add(identity)

        now = utc_now()
        watcher = WatcherModel(
            watcher_id=registration.watcher_id,
            watcher_name=registration.watcher_name,
            user_id=registration.user_id,
            repo_url=registration.repo_url,
            repo_name=registration.repo_name,
            default_branch=registration.default_branch,
            status=WatcherStatus.PENDING_SCHEDULE.value,
            total_candidates=0,
            llm_zombie_risk=registration.llm_zombie_risk,
            application_url=registration.application_url,
            observability_urls=encode_sources(decode_sources(registration.observability_urls)),
            stored_credential=registration.stored_credential,
            created_at=now,
            updated_at=now,
        )
        for candidate in registration.candidates:
            watcher.candidates.append(
                CandidateModel(
                    entity_type=candidate.entity_type,
                    entity_signature=candidate.entity_signature,
                    entity_name=candidate.entity_name,
                    file_path=candidate.file_path,
                    status=CandidateStatus.PENDING.value,
                    zombie_score=candidate.zombie_score,
                    caller_count=candidate.caller_count,
                    discovered_at=now,
                    updated_at=now,
                )
            )

        try:
            with transaction(self.db):
                self.db.add(watcher)
                self.recompute_status(watcher.watcher_id)
        except IntegrityError as exc:
            raise ConflictError(
                "Watcher or candidate already exists",
                {"watcher_id": registration.watcher_id},
            ) from exc

        logger.info(
            "watcher_registered",
            watcher_id=watcher.watcher_id,
            user_id=watcher.user_id,
            candidates=len(registration.candidates),
        )
        self.db.refresh(watcher)
        return watcher

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's watchers with derived status and confidence."""
        stats = (
            select(
                CandidateModel.watcher_id.label("watcher_id"),
                func.count().label("total"),
                func.sum(
                    case((CandidateModel.status == CandidateStatus.ACTIVE.value, 1), else_=0)
                ).label("active"),
                func.sum(
                    case((CandidateModel.status == CandidateStatus.PENDING.value, 1), else_=0)
                ).label("pending"),
                func.avg(CandidateModel.zombie_score).label("avg_score"),
                func.sum(case((CandidateModel.caller_count == 0, 1), else_=0)).label(
                    "zero_callers"
                ),
            )
            .group_by(CandidateModel.watcher_id)
            .subquery()
        )

        rows = self.db.execute(
            select(
                WatcherModel,
                stats.c.total,
                stats.c.active,
                stats.c.pending,
                stats.c.avg_score,
                stats.c.zero_callers,
            )
            .outerjoin(stats, stats.c.watcher_id == WatcherModel.watcher_id)
            .where(WatcherModel.user_id == user_id)
            .order_by(desc(WatcherModel.created_at))
        ).all()

        results = []
        for watcher, total, active, pending, avg_score, zero_callers in rows:
            counts = StatusCounts(
                total=int(total or 0), active=int(active or 0), pending=int(pending or 0)
            )
            average = float(avg_score) if avg_score is not None else None
            results.append(
                {
                    "watcher_id": watcher.watcher_id,
                    "watcher_name": watcher.watcher_name,
                    "repo_url": watcher.repo_url,
                    "repo_name": watcher.repo_name,
                    "status": derive_watcher_status(counts, previous=watcher.status).value,
                    "total_candidates": counts.total,
                    "active_candidates": counts.active,
                    "pending_candidates": counts.pending,
                    "avg_zombie_score": average,
                    "confidence": aggregate_confidence(
                        average,
                        int(zero_callers or 0),
                        counts.total,
                        watcher.llm_zombie_risk,
                    ),
                    "last_scan": isoformat(watcher.updated_at or watcher.created_at),
                }
            )
        return results

    def list_candidates(self, watcher_id: str) -> List[CandidateModel]:
        return (
            self.db.query(CandidateModel)
            .filter(CandidateModel.watcher_id == watcher_id)
            .order_by(desc(CandidateModel.zombie_score), CandidateModel.candidate_id)
            .all()
        )

    def delete(self, watcher_id: str, user_id: str) -> None:
        """Delete a watcher and, by cascade, its candidates."""
        watcher = self.get_owned(watcher_id, user_id)
        with transaction(self.db):
            self.db.delete(watcher)
        logger.info("watcher_deleted", watcher_id=watcher_id, user_id=user_id)

    def get_sources(self, watcher_id: str, user_id: str) -> List[ObservabilitySource]:
        watcher = self.get_owned(watcher_id, user_id)
        return decode_sources(watcher.observability_urls)

    def save_sources(
        self, watcher: WatcherModel, sources: List[ObservabilitySource]
    ) -> List[ObservabilitySource]:
        """Store sources in canonical list form."""
        with transaction(self.db):
            watcher.observability_urls = encode_sources(sources)
            watcher.updated_at = utc_now()
        return sources

    def stats(self, user_id: str) -> Dict[str, Any]:
        """Dashboard counters for one user."""
        watcher_row = self.db.execute(
            select(
                func.count(),
                func.sum(
                    case(
                        (WatcherModel.status != WatcherStatus.PENDING_SCHEDULE.value, 1),
                        else_=0,
                    )
                ),
                func.coalesce(func.sum(WatcherModel.total_candidates), 0),
            ).where(WatcherModel.user_id == user_id)
        ).one()

        candidate_row = self.db.execute(
            select(
                func.count(),
                func.sum(case((CandidateModel.zombie_score >= HIGH_RISK_SCORE, 1), else_=0)),
                func.sum(
                    case(
                        (
                            (CandidateModel.zombie_score >= MEDIUM_RISK_SCORE)
                            & (CandidateModel.zombie_score < HIGH_RISK_SCORE),
                            1,
                        ),
                        else_=0,
                    )
                ),
            )
            .select_from(CandidateModel)
            .join(WatcherModel, CandidateModel.watcher_id == WatcherModel.watcher_id)
            .where(
                WatcherModel.user_id == user_id,
                CandidateModel.status == CandidateStatus.ACTIVE.value,
            )
        ).one()

        since = utc_now() - timedelta(hours=24)
        observation_row = self.db.execute(
            select(
                func.count(ObservationEventModel.event_id),
                func.count(func.distinct(ObservationEventModel.candidate_id)),
            )
            .select_from(ObservationEventModel)
            .join(
                CandidateModel,
                ObservationEventModel.candidate_id == CandidateModel.candidate_id,
            )
            .join(WatcherModel, CandidateModel.watcher_id == WatcherModel.watcher_id)
            .where(WatcherModel.user_id == user_id, ObservationEventModel.observed_at > since)
        ).one()

        total_watchers, active_watchers, total_candidates = watcher_row
        tracked, high_risk, medium_risk = candidate_row
        observations, observed_candidates = observation_row
        return {
            "watchers": {"total": int(total_watchers or 0), "active": int(active_watchers or 0)},
            "candidates": {"total": int(total_candidates or 0), "tracked": int(tracked or 0)},
            "zombies": {"high_risk": int(high_risk or 0), "medium_risk": int(medium_risk or 0)},
            "observations": {
                "last_24h": int(observations or 0),
                "candidates_observed": int(observed_candidates or 0),
            },
        }


class ObservationService:
    """Read-only aggregation over observation events."""

    def __init__(self, db: Session):
        self.db = db

    def stats(self, candidate_id: int) -> Dict[str, Any]:
        row = self.db.execute(
            select(
                func.count(ObservationEventModel.event_id),
                func.sum(case((ObservationEventModel.traffic_detected.is_(True), 1), else_=0)),
                func.sum(case((ObservationEventModel.error_type.is_not(None), 1), else_=0)),
                func.avg(ObservationEventModel.latency_ms),
                func.min(ObservationEventModel.observed_at),
                func.max(ObservationEventModel.observed_at),
            ).where(ObservationEventModel.candidate_id == candidate_id)
        ).one()

        total, with_traffic, with_errors, avg_latency, first, last = row
        return {
            "total_observations": int(total or 0),
            "with_traffic": int(with_traffic or 0),
            "with_errors": int(with_errors or 0),
            "avg_response_time_ms": round(float(avg_latency)) if avg_latency is not None else None,
            "first_observation": isoformat(first),
            "last_observation": isoformat(last),
        }

    def recent(self, candidate_id: int, limit: int = 50) -> List[ObservationEventModel]:
        """Most recent observation events for a candidate."""
        return (
            self.db.query(ObservationEventModel)
            .filter(ObservationEventModel.candidate_id == candidate_id)
            .order_by(desc(ObservationEventModel.observed_at), desc(ObservationEventModel.event_id))
            .limit(limit)
            .all()
        )
