"""
Bulk scheduling.

Applies one computed schedule to many pending candidates of a single
watcher with one multi-row UPDATE and one watcher status recompute, inside
one transaction. Any problem with the selection aborts the whole batch
before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import func, literal, select, update
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..core.enums import CandidateStatus, WatcherStatus
from ..core.schedule import ScheduleResult, compute_schedule
from ..db.base import UTCDateTime, transaction
from ..db.models import CandidateModel, WatcherModel
from ..db.services import WatcherService
from ..errors import ConflictError, NotFoundError, OwnershipError, ValidationError
from ..primitives import utc_now

logger = structlog.get_logger()


@dataclass(frozen=True)
class BulkScheduleResult:
    count: int
    candidate_ids: List[int]
    schedule: ScheduleResult
    watcher_id: str
    watcher_status: WatcherStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheduled_count": self.count,
            "candidate_ids": self.candidate_ids,
            "schedule": self.schedule.to_dict(),
            "watcher_id": self.watcher_id,
            "watcher_status": self.watcher_status.value,
        }


class BulkScheduleCoordinator:
    """Schedules a batch of candidates atomically."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.watchers = WatcherService(db)
        self._clock = clock

    @property
    def ceiling(self) -> int:
        return self.settings.bulk_batch_ceiling

    def _too_many(self, count: int) -> ValidationError:
        return ValidationError(
            f"Maximum {self.ceiling} candidates per batch",
            {"field": "candidate_ids", "count": count, "maximum": self.ceiling},
        )

    def _select_explicit(self, candidate_ids: Sequence[int], user_id: str) -> tuple:
        ids = list(dict.fromkeys(candidate_ids))
        if not ids:
            raise ValidationError("No candidates selected", {"field": "candidate_ids"})
        if len(ids) > self.ceiling:
            raise self._too_many(len(ids))

        rows = self.db.execute(
            select(
                CandidateModel.candidate_id,
                CandidateModel.watcher_id,
                CandidateModel.status,
                WatcherModel.user_id,
            )
            .join(WatcherModel, CandidateModel.watcher_id == WatcherModel.watcher_id)
            .where(CandidateModel.candidate_id.in_(ids))
        ).all()

        found = {row.candidate_id: row for row in rows}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError("Candidates not found", {"candidate_ids": missing})

        foreign = [i for i in ids if found[i].user_id != user_id]
        if foreign:
            raise OwnershipError(
                "Candidates are not owned by the caller", {"candidate_ids": foreign}
            )

        watcher_ids = {row.watcher_id for row in rows}
        if len(watcher_ids) > 1:
            raise ValidationError(
                "All candidates in a batch must belong to one watcher",
                {"watcher_ids": sorted(watcher_ids)},
            )

        not_pending = [i for i in ids if found[i].status != CandidateStatus.PENDING.value]
        if not_pending:
            raise ConflictError(
                "Only pending candidates can be bulk scheduled",
                {"candidate_ids": not_pending},
            )
        return ids, watcher_ids.pop()

    def _select_all_pending(self, watcher_id: str, user_id: str) -> tuple:
        self.watchers.get_owned(watcher_id, user_id)

        # One extra row tells us the batch is over the ceiling
        ids = list(
            self.db.execute(
                select(CandidateModel.candidate_id)
                .where(
                    CandidateModel.watcher_id == watcher_id,
                    CandidateModel.status == CandidateStatus.PENDING.value,
                )
                .order_by(CandidateModel.candidate_id)
                .limit(self.ceiling + 1)
            ).scalars()
        )
        if not ids:
            raise ValidationError(
                "No pending candidates to schedule", {"watcher_id": watcher_id}
            )
        if len(ids) > self.ceiling:
            raise self._too_many(len(ids))
        return ids, watcher_id

    def schedule(
        self,
        user_id: str,
        scan_frequency_minutes,
        analysis_period_minutes,
        candidate_ids: Optional[Sequence[int]] = None,
        watcher_id: Optional[str] = None,
        select_all_pending: bool = False,
    ) -> BulkScheduleResult:
        """Schedule an explicit id list, or every pending candidate of a watcher."""
        if select_all_pending:
            if not watcher_id:
                raise ValidationError(
                    "watcher_id is required when selecting all pending candidates",
                    {"field": "watcher_id"},
                )
            ids, owner_watcher_id = self._select_all_pending(watcher_id, user_id)
        else:
            ids, owner_watcher_id = self._select_explicit(candidate_ids or [], user_id)

        result = compute_schedule(scan_frequency_minutes, analysis_period_minutes, self._clock())
        now = result.computed_at

        with transaction(self.db):
            updated = self.db.execute(
                update(CandidateModel)
                .where(
                    CandidateModel.candidate_id.in_(ids),
                    CandidateModel.status == CandidateStatus.PENDING.value,
                )
                .values(
                    status=CandidateStatus.ACTIVE.value,
                    scan_frequency_minutes=result.scan_frequency_minutes,
                    analysis_period_hours=result.analysis_period_hours,
                    next_observation_at=result.next_observation_at,
                    observation_end_at=result.observation_end_at,
                    first_observed_at=func.coalesce(
                        CandidateModel.first_observed_at, literal(now, UTCDateTime())
                    ),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != len(ids):
                # Another writer moved a candidate out of pending since selection
                raise ConflictError(
                    "Candidates changed while scheduling",
                    {"expected": len(ids), "updated": updated.rowcount},
                )
            status = self.watchers.recompute_status(owner_watcher_id)

        # The bulk UPDATE bypassed the identity map
        self.db.expire_all()

        logger.info(
            "candidates_bulk_scheduled",
            watcher_id=owner_watcher_id,
            count=len(ids),
            scan_frequency_minutes=result.scan_frequency_minutes,
            analysis_period_hours=result.analysis_period_hours,
            watcher_status=status.value,
        )
        return BulkScheduleResult(
            count=len(ids),
            candidate_ids=ids,
            schedule=result,
            watcher_id=owner_watcher_id,
            watcher_status=status,
        )
