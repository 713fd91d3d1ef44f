"""
Candidate lifecycle state machine.

    pending -> active <-> paused
    any non-terminal  -> inactive        (opt-out, terminal)
    active (score >= threshold) / pending_review / confirmed_zombie
                      -> confirmed_zombie (kill submitted)

``killed`` is written only by the removal workflow's own callback.

Every transition checks ownership first, then the source status, and runs in
one transaction together with the owning watcher's status recompute.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Iterable, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..core.enums import TERMINAL_CANDIDATE_STATUSES, CandidateStatus, LifecycleAction
from ..core.schedule import ScheduleResult, compute_resume, compute_schedule
from ..db.base import transaction
from ..db.decision_service import DecisionLogService
from ..db.models import CandidateModel, WatcherModel
from ..db.services import WatcherService
from ..errors import ConflictError, UpstreamError, ValidationError
from ..primitives import utc_now
from ..workflow.client import WorkflowClient
from .credentials import CredentialResolver, SessionCredentialCache

logger = structlog.get_logger()

OPT_OUT_DEFAULT_REASON = "user_opt_out"

_GITHUB_REPO = re.compile(r"github\.com[/:]([^/]+)/([^/.]+)")


def apply_schedule(candidate: CandidateModel, result: ScheduleResult) -> None:
    """Write a computed schedule onto an ORM candidate."""
    candidate.status = CandidateStatus.ACTIVE.value
    candidate.scan_frequency_minutes = result.scan_frequency_minutes
    candidate.analysis_period_hours = result.analysis_period_hours
    candidate.next_observation_at = result.next_observation_at
    candidate.observation_end_at = result.observation_end_at
    if candidate.first_observed_at is None:
        candidate.first_observed_at = result.computed_at
    candidate.updated_at = result.computed_at


def split_repo(repo_name: str, repo_url: str) -> Tuple[str, str]:
    """Return ``(owner, name)`` from ``owner/name`` or a GitHub URL."""
    if "/" in repo_name:
        owner, name = repo_name.split("/", 1)
        if owner and name:
            return owner, name
    match = _GITHUB_REPO.search(repo_url or "")
    if not match:
        raise ValidationError(
            "Could not parse repository owner/name",
            {"repo_name": repo_name, "repo_url": repo_url},
        )
    return match.group(1), match.group(2)


class CandidateLifecycleController:
    """Validates and applies candidate transitions for one caller."""

    def __init__(
        self,
        db: Session,
        workflow: Optional[WorkflowClient] = None,
        credentials: Optional[CredentialResolver] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.watchers = WatcherService(db)
        self.decisions = DecisionLogService(db)
        self.workflow = workflow
        self.credentials = credentials or CredentialResolver(
            SessionCredentialCache(self.settings.credential_cache_ttl_seconds)
        )
        self._clock = clock

    def _load(self, candidate_id: int, user_id: str) -> CandidateModel:
        return self.watchers.get_owned_candidate(candidate_id, user_id)

    def _require_status(
        self, candidate: CandidateModel, allowed: Iterable[CandidateStatus], action: str
    ) -> None:
        allowed_values = {s.value for s in allowed}
        if candidate.status not in allowed_values:
            raise ConflictError(
                f"Cannot {action} candidate with status: {candidate.status}",
                {
                    "candidate_id": candidate.candidate_id,
                    "status": candidate.status,
                    "action": action,
                },
            )

    def _finish_transition(self, candidate: CandidateModel, from_status: str, action: str):
        self.watchers.recompute_status(candidate.watcher_id)
        logger.info(
            "candidate_transition",
            candidate_id=candidate.candidate_id,
            watcher_id=candidate.watcher_id,
            action=action,
            from_status=from_status,
            to_status=candidate.status,
        )

    def schedule(
        self,
        candidate_id: int,
        user_id: str,
        scan_frequency_minutes,
        analysis_period_minutes,
    ) -> CandidateModel:
        """pending -> active with a fresh observation window."""
        candidate = self._load(candidate_id, user_id)
        self._require_status(candidate, {CandidateStatus.PENDING}, "schedule")
        result = compute_schedule(scan_frequency_minutes, analysis_period_minutes, self._clock())

        from_status = candidate.status
        with transaction(self.db):
            apply_schedule(candidate, result)
            self._finish_transition(candidate, from_status, "schedule")
        return candidate

    def pause(
        self, candidate_id: int, user_id: str, reason: Optional[str] = None
    ) -> CandidateModel:
        """active -> paused. Schedule fields are kept."""
        candidate = self._load(candidate_id, user_id)
        self._require_status(candidate, {CandidateStatus.ACTIVE}, "pause")

        now = self._clock()
        from_status = candidate.status
        with transaction(self.db):
            candidate.status = CandidateStatus.PAUSED.value
            candidate.pause_reason = reason
            candidate.paused_at = now
            candidate.updated_at = now
            self._finish_transition(candidate, from_status, "pause")
        return candidate

    def resume(
        self,
        candidate_id: int,
        user_id: str,
        scan_frequency_minutes=None,
        analysis_period_minutes=None,
    ) -> CandidateModel:
        """paused -> active, or pending -> active (same as ``schedule``).

        Resuming a paused candidate moves only ``next_observation_at``;
        the window end stays where it was.
        """
        candidate = self._load(candidate_id, user_id)
        self._require_status(
            candidate, {CandidateStatus.PAUSED, CandidateStatus.PENDING}, "resume"
        )
        if candidate.status == CandidateStatus.PENDING.value:
            return self.schedule(
                candidate_id, user_id, scan_frequency_minutes, analysis_period_minutes
            )

        now = self._clock()
        next_observation_at = compute_resume(candidate.scan_frequency_minutes, now)

        from_status = candidate.status
        with transaction(self.db):
            candidate.status = CandidateStatus.ACTIVE.value
            candidate.next_observation_at = next_observation_at
            candidate.pause_reason = None
            candidate.paused_at = None
            candidate.updated_at = now
            self._finish_transition(candidate, from_status, "resume")
        return candidate

    def opt_out(
        self, candidate_id: int, user_id: str, reason: Optional[str] = None
    ) -> CandidateModel:
        """Any non-terminal status -> inactive. Nothing leaves inactive."""
        candidate = self._load(candidate_id, user_id)
        allowed = set(CandidateStatus) - TERMINAL_CANDIDATE_STATUSES
        self._require_status(candidate, allowed, "opt out")

        now = self._clock()
        from_status = candidate.status
        with transaction(self.db):
            candidate.status = CandidateStatus.INACTIVE.value
            candidate.pause_reason = reason or OPT_OUT_DEFAULT_REASON
            candidate.paused_at = now
            candidate.updated_at = now
            self._finish_transition(candidate, from_status, "opt_out")
        return candidate

    def apply(
        self,
        action: LifecycleAction,
        candidate_id: int,
        user_id: str,
        scan_frequency_minutes=None,
        analysis_period_minutes=None,
        reason: Optional[str] = None,
    ) -> CandidateModel:
        """Dispatch one of the single-candidate schedule verbs."""
        action = LifecycleAction(action)
        if action is LifecycleAction.SCHEDULE:
            return self.schedule(
                candidate_id, user_id, scan_frequency_minutes, analysis_period_minutes
            )
        if action is LifecycleAction.PAUSE:
            return self.pause(candidate_id, user_id, reason)
        if action is LifecycleAction.RESUME:
            return self.resume(
                candidate_id, user_id, scan_frequency_minutes, analysis_period_minutes
            )
        return self.opt_out(candidate_id, user_id, reason)

    def is_kill_eligible(self, candidate: CandidateModel) -> bool:
        if candidate.status in (
            CandidateStatus.PENDING_REVIEW.value,
            CandidateStatus.CONFIRMED_ZOMBIE.value,
        ):
            return True
        return (
            candidate.status == CandidateStatus.ACTIVE.value
            and candidate.zombie_score is not None
            and candidate.zombie_score >= self.settings.kill_score_threshold
        )

    async def kill(
        self,
        candidate_id: int,
        user_id: str,
        explicit_credential: Optional[str] = None,
        action_source: str = "api",
    ) -> CandidateModel:
        """Submit a removal request and record the operator's decision.

        The workflow submission happens first; if it fails nothing is
        mutated.

        Raises:
            CredentialMissing: no credential resolved
            UpstreamError: the workflow engine rejected or did not answer
            OperationTimeoutError: the submission timed out
        """
        candidate = self._load(candidate_id, user_id)
        if not self.is_kill_eligible(candidate):
            raise ConflictError(
                f"Cannot kill candidate with status: {candidate.status}",
                {
                    "candidate_id": candidate_id,
                    "status": candidate.status,
                    "zombie_score": candidate.zombie_score,
                },
            )

        watcher: WatcherModel = candidate.watcher
        resolved = self.credentials.resolve(
            user_id, explicit=explicit_credential, stored=watcher.stored_credential
        )
        repo_owner, repo_name = split_repo(watcher.repo_name, watcher.repo_url)

        if self.workflow is None:
            raise UpstreamError("Workflow engine client is not configured")
        execution_id = await self.workflow.submit_removal(
            flow_id=self.settings.kill_flow_id,
            candidate_id=candidate.candidate_id,
            watcher_id=candidate.watcher_id,
            entity_signature=candidate.entity_signature,
            file_path=candidate.file_path,
            repo_url=watcher.repo_url,
            repo_owner=repo_owner,
            repo_name=repo_name,
            credential=resolved.value,
        )
        self.credentials.remember(user_id, resolved)

        now = self._clock()
        from_status = candidate.status
        with transaction(self.db):
            candidate.status = CandidateStatus.CONFIRMED_ZOMBIE.value
            candidate.human_action = "kill"
            candidate.human_action_at = now
            candidate.kill_execution_id = execution_id
            candidate.updated_at = now
            self.decisions.record(
                candidate_id=candidate.candidate_id,
                watcher_id=candidate.watcher_id,
                actor_id=user_id,
                decision="kill",
                action_type="kill",
                action_source=action_source,
                actor_type="user",
                execution_id=execution_id,
            )
            self._finish_transition(candidate, from_status, "kill")

        logger.info(
            "kill_submitted",
            candidate_id=candidate_id,
            execution_id=execution_id,
            credential_source=resolved.source,
        )
        return candidate
