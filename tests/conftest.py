"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from doomsday_watcher.db.base import Base, enable_sqlite_foreign_keys
from doomsday_watcher.db.models import CandidateModel
from doomsday_watcher.db.services import WatcherService
from doomsday_watcher.schemas import WatcherRegistration

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for lifecycle tests."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_registration(
    watcher_id: str = "watcher-1",
    user_id: str = "user-1",
    candidates: Optional[List[Dict[str, Any]]] = None,
    **overrides,
) -> WatcherRegistration:
    if candidates is None:
        candidates = [
            {
                "entity_type": "function",
                "entity_signature": f"def unused_{i}()",
                "entity_name": f"unused_{i}",
                "file_path": f"app/module_{i}.py",
                "zombie_score": 60,
                "caller_count": 0,
            }
            for i in range(3)
        ]
    payload: Dict[str, Any] = {
        "watcher_id": watcher_id,
        "watcher_name": f"{watcher_id} watcher",
        "user_id": user_id,
        "repo_url": "https://github.com/acme/shop",
        "repo_name": "acme/shop",
        "candidates": candidates,
    }
    payload.update(overrides)
    return WatcherRegistration.model_validate(payload)


@pytest.fixture
def seed_watcher(db_session):
    """Register a watcher through the service and return its candidate ids."""

    def _seed(
        watcher_id: str = "watcher-1",
        user_id: str = "user-1",
        candidates: Optional[List[Dict[str, Any]]] = None,
        **overrides,
    ) -> List[int]:
        WatcherService(db_session).register_from_workflow(
            make_registration(watcher_id, user_id, candidates, **overrides)
        )
        return [
            c.candidate_id
            for c in db_session.query(CandidateModel)
            .filter(CandidateModel.watcher_id == watcher_id)
            .order_by(CandidateModel.candidate_id)
        ]

    return _seed


def set_candidate(db_session, candidate_id: int, **fields) -> CandidateModel:
    """Force candidate columns directly, bypassing the lifecycle."""
    candidate = db_session.get(CandidateModel, candidate_id)
    for key, value in fields.items():
        setattr(candidate, key, value)
    db_session.commit()
    return candidate
