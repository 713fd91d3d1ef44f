"""Tests for bulk scheduling."""

from datetime import timedelta

import pytest

from doomsday_watcher.config import Settings
from doomsday_watcher.core.enums import WatcherStatus
from doomsday_watcher.db.models import CandidateModel, WatcherModel
from doomsday_watcher.db.services import WatcherService
from doomsday_watcher.errors import (
    ConflictError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from doomsday_watcher.lifecycle import BulkScheduleCoordinator

from conftest import T0, set_candidate


@pytest.fixture
def coordinator(db_session, clock):
    return BulkScheduleCoordinator(db_session, clock=clock)


@pytest.fixture
def recompute_calls(monkeypatch):
    calls = []
    original = WatcherService.recompute_status

    def spy(self, watcher_id):
        calls.append(watcher_id)
        return original(self, watcher_id)

    monkeypatch.setattr(WatcherService, "recompute_status", spy)
    return calls


def statuses(db_session, ids):
    db_session.expire_all()
    return [db_session.get(CandidateModel, i).status for i in ids]


def many_candidates(count):
    return [
        {
            "entity_type": "function",
            "entity_signature": f"def f{i}()",
            "file_path": f"pkg/f{i}.py",
        }
        for i in range(count)
    ]


class TestBulkSchedule:
    def test_schedules_all_with_identical_timestamps(
        self, db_session, coordinator, seed_watcher, recompute_calls
    ):
        ids = seed_watcher()
        recompute_calls.clear()

        result = coordinator.schedule("user-1", 5, 20, candidate_ids=ids)

        assert result.count == 3
        assert result.watcher_id == "watcher-1"
        assert result.watcher_status == WatcherStatus.ACTIVE
        assert recompute_calls == ["watcher-1"]

        db_session.expire_all()
        candidates = [db_session.get(CandidateModel, i) for i in ids]
        assert {c.status for c in candidates} == {"active"}
        assert {c.next_observation_at for c in candidates} == {T0 + timedelta(minutes=5)}
        assert {c.observation_end_at for c in candidates} == {T0 + timedelta(minutes=20)}
        assert {c.first_observed_at for c in candidates} == {T0}
        assert {c.analysis_period_hours for c in candidates} == {1}
        assert db_session.get(WatcherModel, "watcher-1").status == "active"

    def test_result_payload(self, coordinator, seed_watcher):
        ids = seed_watcher()
        payload = coordinator.schedule("user-1", 5, 20, candidate_ids=ids[:2]).to_dict()
        assert payload["scheduled_count"] == 2
        assert payload["watcher_status"] == "partially_scheduled"
        assert payload["schedule"]["next_observation_at"] == "2026-03-01T12:05:00+00:00"

    def test_keeps_existing_first_observed_at(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        earlier = T0 - timedelta(days=1)
        set_candidate(db_session, ids[0], first_observed_at=earlier)

        coordinator.schedule("user-1", 5, 20, candidate_ids=ids)

        db_session.expire_all()
        assert db_session.get(CandidateModel, ids[0]).first_observed_at == earlier
        assert db_session.get(CandidateModel, ids[1]).first_observed_at == T0

    def test_duplicate_ids_count_once(self, coordinator, seed_watcher):
        ids = seed_watcher()
        result = coordinator.schedule("user-1", 5, 20, candidate_ids=[ids[0], ids[0]])
        assert result.count == 1

    def test_over_ceiling_mutates_nothing(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        too_many = ids + list(range(10_000, 10_098))
        assert len(too_many) == 101

        with pytest.raises(ValidationError) as exc:
            coordinator.schedule("user-1", 5, 20, candidate_ids=too_many)

        assert exc.value.details["maximum"] == 100
        assert statuses(db_session, ids) == ["pending"] * 3

    def test_foreign_candidate_mutates_nothing(
        self, db_session, coordinator, seed_watcher, recompute_calls
    ):
        ids = seed_watcher()
        foreign = seed_watcher(watcher_id="watcher-2", user_id="user-2")
        recompute_calls.clear()

        with pytest.raises(OwnershipError) as exc:
            coordinator.schedule("user-1", 5, 20, candidate_ids=ids + foreign[:1])

        assert exc.value.details["candidate_ids"] == foreign[:1]
        assert statuses(db_session, ids + foreign) == ["pending"] * 6
        assert recompute_calls == []

    def test_missing_candidate(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        with pytest.raises(NotFoundError):
            coordinator.schedule("user-1", 5, 20, candidate_ids=ids + [424242])
        assert statuses(db_session, ids) == ["pending"] * 3

    def test_non_pending_candidate(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        set_candidate(db_session, ids[1], status="paused")

        with pytest.raises(ConflictError) as exc:
            coordinator.schedule("user-1", 5, 20, candidate_ids=ids)

        assert exc.value.details["candidate_ids"] == [ids[1]]
        assert statuses(db_session, ids) == ["pending", "paused", "pending"]

    def test_candidates_from_two_watchers(self, coordinator, seed_watcher):
        first = seed_watcher()
        second = seed_watcher(watcher_id="watcher-2")
        with pytest.raises(ValidationError):
            coordinator.schedule("user-1", 5, 20, candidate_ids=[first[0], second[0]])

    def test_invalid_schedule(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        with pytest.raises(ValidationError):
            coordinator.schedule("user-1", 5, 5, candidate_ids=ids)
        assert statuses(db_session, ids) == ["pending"] * 3

    def test_empty_selection(self, coordinator, seed_watcher):
        seed_watcher()
        with pytest.raises(ValidationError):
            coordinator.schedule("user-1", 5, 20, candidate_ids=[])


class TestSelectAllPending:
    def test_schedules_only_pending(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        set_candidate(db_session, ids[0], status="inactive")

        result = coordinator.schedule(
            "user-1", 5, 20, watcher_id="watcher-1", select_all_pending=True
        )

        assert result.candidate_ids == ids[1:]
        assert statuses(db_session, ids) == ["inactive", "active", "active"]

    def test_requires_watcher_id(self, coordinator, seed_watcher):
        seed_watcher()
        with pytest.raises(ValidationError):
            coordinator.schedule("user-1", 5, 20, select_all_pending=True)

    def test_foreign_watcher(self, coordinator, seed_watcher):
        seed_watcher(user_id="user-2")
        with pytest.raises(OwnershipError):
            coordinator.schedule(
                "user-1", 5, 20, watcher_id="watcher-1", select_all_pending=True
            )

    def test_nothing_pending(self, db_session, coordinator, seed_watcher):
        ids = seed_watcher()
        coordinator.schedule("user-1", 5, 20, candidate_ids=ids)
        with pytest.raises(ValidationError):
            coordinator.schedule(
                "user-1", 5, 20, watcher_id="watcher-1", select_all_pending=True
            )

    def test_over_ceiling(self, db_session, clock, seed_watcher):
        ids = seed_watcher(candidates=many_candidates(4))
        coordinator = BulkScheduleCoordinator(
            db_session, settings=Settings(bulk_batch_ceiling=3), clock=clock
        )

        with pytest.raises(ValidationError):
            coordinator.schedule(
                "user-1", 5, 20, watcher_id="watcher-1", select_all_pending=True
            )
        assert statuses(db_session, ids) == ["pending"] * 4
