"""
FastAPI application for Doomsday Watcher.
"""

from __future__ import annotations

import importlib.metadata
import json
from collections.abc import AsyncGenerator
from contextlib import aclosing, asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask

from .config import get_settings
from .core.confidence import confidence_from_scores
from .db.base import DatabaseBootstrap, get_db
from .db.decision_service import DecisionLogService
from .db.services import ObservationService, WatcherService
from .errors import ValidationError, WatcherError
from .lifecycle import (
    BulkScheduleCoordinator,
    CandidateLifecycleController,
    CredentialResolver,
    SessionCredentialCache,
)
from .schemas import (
    BulkScheduleRequest,
    KillRequest,
    ScheduleActionRequest,
    SourceValidateRequest,
    SourcesPatchRequest,
    WatcherRegistration,
)
from .sources import add_source, remove_source, validate_source
from .workflow import ExecutionStreamTranslator, StreamRegistry, SubscriptionTracker
from .workflow.client import WorkflowClient

# Initialize structured logging
logger = structlog.get_logger()

settings = get_settings()

# Process-wide collaborators; exposed through dependencies so tests can swap them
stream_registry = StreamRegistry()
credential_resolver = CredentialResolver(
    SessionCredentialCache(settings.credential_cache_ttl_seconds)
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting Doomsday Watcher")

    bootstrap = DatabaseBootstrap()
    if not bootstrap.ensure_initialized():
        logger.error("Failed to start application: database unavailable")
        raise RuntimeError("Database unavailable")
    app.state.bootstrap = bootstrap

    yield

    logger.info("Shutting down Doomsday Watcher")
    client: Optional[WorkflowClient] = getattr(app.state, "workflow_client", None)
    if client is not None:
        await client.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Lifecycle and scheduling engine for dead-code candidates",
    version=importlib.metadata.version("doomsday-watcher"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WatcherError)
async def watcher_error_handler(request: Request, exc: WatcherError) -> JSONResponse:
    """Map domain errors onto their HTTP status."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        path=request.url.path,
        code=exc.code,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Dependencies
def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Opaque caller identity from the ``X-User-Id`` header."""
    if not x_user_id:
        raise ValidationError("Missing X-User-Id header", {"field": "X-User-Id"})
    return x_user_id


def get_workflow_client(request: Request) -> WorkflowClient:
    client = getattr(request.app.state, "workflow_client", None)
    if client is None:
        client = WorkflowClient()
        request.app.state.workflow_client = client
    return client


def get_credential_resolver() -> CredentialResolver:
    return credential_resolver


def get_stream_registry() -> StreamRegistry:
    return stream_registry


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Liveness check."""
    return {"status": "ok"}


# Watchers
@app.get("/watchers", tags=["watchers"])
async def list_watchers(
    user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """List the caller's watchers with derived status and confidence."""
    return {"watchers": WatcherService(db).list_for_user(user_id)}


@app.post("/watchers", status_code=201, tags=["watchers"])
async def register_watcher(
    registration: WatcherRegistration, db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Completion callback of the watcher creation workflow."""
    watcher = WatcherService(db).register_from_workflow(registration)
    return watcher.to_dict()


@app.get("/watchers/{watcher_id}", tags=["watchers"])
async def get_watcher(
    watcher_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Get a watcher with its candidates."""
    service = WatcherService(db)
    watcher = service.get_owned(watcher_id, user_id)
    candidates = service.list_candidates(watcher_id)

    payload = watcher.to_dict()
    payload["confidence"] = confidence_from_scores(
        [c.zombie_score for c in candidates],
        [c.caller_count for c in candidates],
        watcher.llm_zombie_risk,
    )
    payload["candidates"] = [c.to_dict() for c in candidates]
    return payload


@app.delete("/watchers/{watcher_id}", tags=["watchers"])
async def delete_watcher(
    watcher_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Delete a watcher and all of its candidates."""
    WatcherService(db).delete(watcher_id, user_id)
    return {"deleted": True, "watcher_id": watcher_id}


@app.get("/watchers/{watcher_id}/sources", tags=["watchers"])
async def get_sources(
    watcher_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, List[Dict[str, Any]]]:
    sources = WatcherService(db).get_sources(watcher_id, user_id)
    return {"sources": [s.to_public_dict() for s in sources]}


@app.post("/sources/validate", tags=["watchers"])
async def validate_source_endpoint(body: SourceValidateRequest) -> Dict[str, Any]:
    """Check a source type and URL without attaching it to a watcher."""
    validate_source(body.type, body.url)
    return {"valid": True, "type": body.type}


@app.patch("/watchers/{watcher_id}/sources", tags=["watchers"])
async def patch_sources(
    watcher_id: str,
    body: SourcesPatchRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, List[Dict[str, Any]]]:
    """Add or remove one observability source."""
    service = WatcherService(db)
    watcher = service.get_owned(watcher_id, user_id)
    current = service.get_sources(watcher_id, user_id)

    if body.action == "add":
        updated = add_source(current, body.type, body.url, body.token, user_id)
    else:
        if body.index is None:
            raise ValidationError("index is required to remove a source", {"field": "index"})
        updated = remove_source(current, body.index)

    service.save_sources(watcher, updated)
    logger.info(
        "Observability sources updated",
        watcher_id=watcher_id,
        action=body.action,
        count=len(updated),
    )
    return {"sources": [s.to_public_dict() for s in updated]}


# Candidates
@app.post("/candidates/schedule/bulk", tags=["candidates"])
async def bulk_schedule(
    body: BulkScheduleRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Schedule many pending candidates with one set of parameters."""
    result = BulkScheduleCoordinator(db).schedule(
        user_id,
        body.scan_frequency_minutes,
        body.analysis_period_minutes,
        candidate_ids=body.candidate_ids,
        watcher_id=body.watcher_id,
        select_all_pending=body.select_all_pending,
    )
    return result.to_dict()


@app.get("/candidates/{candidate_id}", tags=["candidates"])
async def get_candidate(
    candidate_id: int, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Get a candidate with observation statistics and recent events."""
    candidate = WatcherService(db).get_owned_candidate(candidate_id, user_id)
    observations = ObservationService(db)

    payload = candidate.to_dict()
    payload["watcher_name"] = candidate.watcher.watcher_name
    payload["repo_url"] = candidate.watcher.repo_url
    payload["application_url"] = candidate.watcher.application_url
    return {
        "candidate": payload,
        "observation_stats": observations.stats(candidate_id),
        "recent_events": [e.to_dict() for e in observations.recent(candidate_id)],
    }


@app.post("/candidates/{candidate_id}/schedule", tags=["candidates"])
async def schedule_candidate(
    candidate_id: int,
    body: ScheduleActionRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Schedule, pause, resume or opt out a single candidate."""
    candidate = CandidateLifecycleController(db).apply(
        body.action,
        candidate_id,
        user_id,
        scan_frequency_minutes=body.scan_frequency_minutes,
        analysis_period_minutes=body.analysis_period_minutes,
        reason=body.reason,
    )
    return {"action": body.action.value, "candidate": candidate.to_dict()}


@app.post("/candidates/{candidate_id}/kill", tags=["candidates"])
async def kill_candidate(
    candidate_id: int,
    body: Optional[KillRequest] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
    workflow: WorkflowClient = Depends(get_workflow_client),
    credentials: CredentialResolver = Depends(get_credential_resolver),
) -> Dict[str, Any]:
    """Submit a removal request for a candidate."""
    body = body or KillRequest()
    controller = CandidateLifecycleController(db, workflow=workflow, credentials=credentials)
    candidate = await controller.kill(
        candidate_id,
        user_id,
        explicit_credential=body.credential,
        action_source=body.action_source,
    )
    return {
        "execution_id": candidate.kill_execution_id,
        "candidate": candidate.to_dict(),
    }


@app.get("/candidates/{candidate_id}/decisions", tags=["candidates"])
async def list_decisions(
    candidate_id: int,
    limit: int = 100,
    offset: int = 0,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Decision history for a candidate, newest first."""
    WatcherService(db).get_owned_candidate(candidate_id, user_id)
    entries = DecisionLogService(db).query_by_candidate(candidate_id, limit=limit, offset=offset)
    return {"decisions": [e.to_dict() for e in entries]}


# Execution stream
def _sse(data: Dict[str, Any], event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(data)}\n\n"


@app.get("/executions/{execution_id}/stream", tags=["executions"])
async def stream_execution(
    execution_id: str,
    request: Request,
    workflow: WorkflowClient = Depends(get_workflow_client),
    registry: StreamRegistry = Depends(get_stream_registry),
) -> StreamingResponse:
    """Server-Sent Events stream of step updates for one execution."""
    claim_token = registry.acquire(execution_id)
    translator = ExecutionStreamTranslator(workflow.fetch_execution)
    tracker = SubscriptionTracker()

    async def event_source() -> AsyncGenerator[str, None]:
        try:
            async with aclosing(translator.stream(execution_id)) as updates:
                async for update in updates:
                    if await request.is_disconnected():
                        break
                    tracker.record(update)
                    yield _sse(update.to_dict())
        except WatcherError as exc:
            yield _sse(exc.to_dict(), event="error")
        finally:
            registry.release(execution_id, claim_token)
            logger.info(
                "Execution stream closed",
                execution_id=execution_id,
                outcome=tracker.outcome(),
                delivered=tracker.delivered,
            )

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        # Releases the claim even if the body was never iterated
        background=BackgroundTask(registry.release, execution_id, claim_token),
    )


@app.get("/stats", tags=["system"])
async def get_stats(
    user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Dashboard counters for the caller."""
    return {"stats": WatcherService(db).stats(user_id)}
