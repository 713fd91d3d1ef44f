"""
Request schemas for the Doomsday Watcher HTTP API.

Schedule bounds are deliberately not enforced here: they are checked by the
schedule calculator so that every entry point reports the same
``VALIDATION_ERROR`` with the violated bound.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from .core.enums import LifecycleAction


class CandidateRegistration(BaseModel):
    """One candidate reported by the watcher creation workflow."""

    model_config = ConfigDict(extra="ignore")

    entity_type: constr(min_length=1, max_length=50)
    entity_signature: constr(min_length=1, max_length=500)
    entity_name: Optional[str] = None
    file_path: constr(min_length=1)
    zombie_score: Optional[int] = Field(default=None, ge=0, le=100)
    caller_count: int = Field(default=0, ge=0)


class WatcherRegistration(BaseModel):
    """Completion payload of the watcher creation workflow."""

    model_config = ConfigDict(extra="ignore")

    watcher_id: constr(min_length=1, max_length=255)
    watcher_name: constr(min_length=1, max_length=500)
    user_id: constr(min_length=1, max_length=255)
    repo_url: constr(min_length=1)
    repo_name: constr(min_length=1, max_length=500)
    default_branch: str = "main"
    llm_zombie_risk: Any = None
    application_url: Optional[str] = None
    observability_urls: Any = None
    stored_credential: Optional[str] = None
    candidates: List[CandidateRegistration] = Field(default_factory=list)


class ScheduleActionRequest(BaseModel):
    """Body of ``POST /candidates/{id}/schedule``."""

    action: LifecycleAction = LifecycleAction.SCHEDULE
    scan_frequency_minutes: Optional[float] = None
    analysis_period_minutes: Optional[float] = None
    reason: Optional[str] = Field(default=None, max_length=2000)


class KillRequest(BaseModel):
    """Body of ``POST /candidates/{id}/kill``.

    ``credential`` overrides the session-cached and stored credentials.
    """

    credential: Optional[str] = None
    action_source: str = "api"


class BulkScheduleRequest(BaseModel):
    """Body of ``POST /candidates/schedule/bulk``.

    Either ``candidate_ids`` or ``watcher_id`` with ``select_all_pending``.
    """

    candidate_ids: Optional[List[int]] = None
    watcher_id: Optional[str] = None
    select_all_pending: bool = False
    scan_frequency_minutes: Optional[float] = None
    analysis_period_minutes: Optional[float] = None

    @field_validator("candidate_ids")
    @classmethod
    def dedupe_ids(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        return list(dict.fromkeys(v))


class SourcesPatchRequest(BaseModel):
    """Body of ``PATCH /watchers/{id}/sources``."""

    action: Literal["add", "remove"]
    type: Optional[str] = None
    url: Optional[str] = None
    token: Optional[str] = None
    index: Optional[int] = None


class SourceValidateRequest(BaseModel):
    """Body of ``POST /sources/validate``."""

    type: str
    url: str
