"""Tests for the execution step reducer."""

import pytest

from doomsday_watcher.workflow import Execution, StepTracker, derive_step, strip_hierarchy
from doomsday_watcher.workflow.steps import DONE_STEP, UNKNOWN_STEP


def run(task_id, state, at=None, outputs=None):
    histories = [{"state": state, "date": at}] if at else []
    return {
        "taskId": task_id,
        "state": {"current": state, "histories": histories},
        "outputs": outputs,
    }


def execution(state, runs=(), outputs=None):
    return Execution.model_validate(
        {
            "id": "exec-1",
            "state": {"current": state},
            "taskRunList": list(runs),
            "outputs": outputs,
        }
    )


class TestStripHierarchy:
    @pytest.mark.parametrize(
        "task_id,expected",
        [
            ("clone_and_discover", "clone_and_discover"),
            ("store_watcher.insert_row", "store_watcher"),
            ("llm_candidate_analysis[2]", "llm_candidate_analysis"),
            ("detect_dependencies_3", "detect_dependencies"),
            ("custom-task-12", "custom-task"),
        ],
    )
    def test_reduces_to_base(self, task_id, expected):
        assert strip_hierarchy(task_id) == expected

    def test_exact_hit_keeps_numeric_suffix(self):
        assert strip_hierarchy("phase_2", {"phase_2": 1, "phase": 2}) == "phase_2"


class TestDeriveStep:
    def test_success_is_done(self):
        derived = derive_step(execution("SUCCESS", [run("output_success", "SUCCESS")]))
        assert derived.step == DONE_STEP
        assert derived.terminal
        assert not derived.failed

    def test_failure_names_first_failed_step(self):
        derived = derive_step(
            execution(
                "FAILED",
                [
                    run("clone_and_discover", "SUCCESS"),
                    run("detect_dependencies[1]", "FAILED", outputs={"error_message": "boom"}),
                    run("llm_repo_analysis", "KILLED"),
                ],
            )
        )
        assert derived.step == "detect_dependencies"
        assert derived.error == "boom"
        assert derived.terminal and derived.failed

    def test_failure_without_error_output(self):
        derived = derive_step(execution("KILLED", [run("store_watcher", "KILLED")]))
        assert derived.error == "Workflow failed at step: store_watcher"

    def test_failure_without_failed_run(self):
        derived = derive_step(execution("FAILED", outputs={"error_message": "quota"}))
        assert derived.step == UNKNOWN_STEP
        assert derived.error == "quota"

    def test_running_task_wins(self):
        derived = derive_step(
            execution(
                "RUNNING",
                [run("clone_and_discover", "SUCCESS"), run("llm_repo_analysis", "RUNNING")],
            )
        )
        assert derived.step == "llm_repo_analysis"
        assert not derived.terminal

    def test_latest_completed_by_timestamp_not_position(self):
        derived = derive_step(
            execution(
                "RUNNING",
                [
                    run("store_watcher", "SUCCESS", at="2026-03-01T12:03:00Z"),
                    run("clone_and_discover", "SUCCESS", at="2026-03-01T12:01:00Z"),
                ],
            )
        )
        assert derived.step == "store_watcher"

    def test_nothing_started(self):
        derived = derive_step(execution("CREATED"))
        assert derived.step is None
        assert derived.state == "CREATED"


class TestStepTracker:
    def test_index_never_regresses(self):
        tracker = StepTracker()
        first = tracker.advance(
            execution("RUNNING", [run("llm_candidate_analysis", "RUNNING")])
        )
        assert (first.step, first.step_index) == ("llm_candidate_analysis", 3)

        # An older completion arriving later does not move the display back
        second = tracker.advance(
            execution("RUNNING", [run("clone_and_discover", "SUCCESS", at="2026-03-01T12:09:00Z")])
        )
        assert (second.step, second.step_index) == ("llm_candidate_analysis", 3)

        done = tracker.advance(execution("SUCCESS"))
        assert done.step == DONE_STEP
        assert done.step_index == done.total_steps == 5
        assert done.terminal

    def test_failure_reports_step_without_lowering_index(self):
        tracker = StepTracker()
        tracker.advance(execution("RUNNING", [run("store_watcher", "RUNNING")]))

        failed = tracker.advance(execution("FAILED", [run("clone_and_discover", "FAILED")]))
        assert failed.step == "clone_and_discover"
        assert failed.step_index == 4
        assert failed.error == "Workflow failed at step: clone_and_discover"

    def test_unmapped_step_is_ignored(self):
        tracker = StepTracker()
        update = tracker.advance(execution("RUNNING", [run("mystery_task", "RUNNING")]))
        assert update.step is None
        assert update.step_index == 0

    def test_candidates_found_from_outputs(self):
        tracker = StepTracker()
        update = tracker.advance(execution("SUCCESS", outputs={"candidates_count": "7"}))
        assert update.candidates_found == 7

        update = tracker.advance(execution("SUCCESS", outputs={"candidates_found": True}))
        assert update.candidates_found is None

    def test_custom_step_map(self):
        tracker = StepTracker({"build": 1, "deploy": 2})
        update = tracker.advance(execution("RUNNING", [run("deploy", "RUNNING")]))
        assert update.total_steps == 2
        assert update.step_index == 2
        assert update.to_dict()["step"] == "deploy"
