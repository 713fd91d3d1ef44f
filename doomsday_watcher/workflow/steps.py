"""
Step reducer for polled workflow executions.

The engine reports a coarse overall state plus an unordered task-run list
that may contain duplicates, hierarchical ids (``parent.child``) and
iteration suffixes (``task[2]``, ``task_2``, ``task-2``). This module
reduces one polled snapshot to a single UI-facing step and keeps the
displayed step index monotonic across snapshots.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from .models import FAILURE_STATES, SUCCESS_STATES, Execution, TaskRun

DONE_STEP = "done"
UNKNOWN_STEP = "unknown"

# Watcher creation flow
DEFAULT_STEP_MAP: Dict[str, int] = {
    "clone_and_discover": 1,
    "llm_repo_analysis": 2,
    "detect_dependencies": 2,
    "llm_candidate_analysis": 3,
    "store_watcher": 4,
    "store_candidates": 4,
    "output_success": 5,
    DONE_STEP: 5,
}

_BRACKET_SUFFIX = re.compile(r"\[\d+\]$")
_NUMERIC_SUFFIX = re.compile(r"[_-]\d+$")


def strip_hierarchy(task_id: str, step_map: Mapping[str, int] = DEFAULT_STEP_MAP) -> str:
    """Reduce a task id to its base step name.

    Exact step-map hits win so that step names which legitimately end in a
    number are not mangled.
    """
    if task_id in step_map:
        return task_id
    base = task_id.split(".")[0]
    if base in step_map:
        return base
    base = _BRACKET_SUFFIX.sub("", base)
    if base in step_map:
        return base
    return _NUMERIC_SUFFIX.sub("", base)


@dataclass(frozen=True)
class StepDerivation:
    """Result of reducing one snapshot, before monotonic smoothing."""

    state: str
    step: Optional[str]
    error: Optional[str] = None
    terminal: bool = False
    failed: bool = False


def _first_failed(execution: Execution) -> Optional[TaskRun]:
    for run in execution.task_runs:
        if run.current in FAILURE_STATES:
            return run
    return None


def _latest_completed(execution: Execution) -> Optional[TaskRun]:
    completed = [run for run in execution.task_runs if run.current in SUCCESS_STATES]
    if not completed:
        return None
    # max() keeps the first of equal keys; runs without history sort lowest
    return max(
        completed,
        key=lambda run: (run.last_transition_at() is not None, run.last_transition_at() or 0),
    )


def _error_message(execution: Execution, run: Optional[TaskRun]) -> Optional[str]:
    if run is not None and run.outputs:
        message = run.outputs.get("error_message")
        if message:
            return str(message)
    message = execution.output("error_message")
    return str(message) if message else None


def derive_step(
    execution: Execution, step_map: Mapping[str, int] = DEFAULT_STEP_MAP
) -> StepDerivation:
    """Reduce one polled execution to a state, base step and optional error."""
    state = execution.current

    if state in SUCCESS_STATES:
        return StepDerivation(state=state, step=DONE_STEP, terminal=True)

    if state in FAILURE_STATES:
        failed = _first_failed(execution)
        if failed is None:
            return StepDerivation(
                state=state,
                step=UNKNOWN_STEP,
                error=_error_message(execution, None) or "Workflow failed",
                terminal=True,
                failed=True,
            )
        base = strip_hierarchy(failed.task_id, step_map)
        return StepDerivation(
            state=state,
            step=base,
            error=_error_message(execution, failed) or f"Workflow failed at step: {base}",
            terminal=True,
            failed=True,
        )

    running = next((run for run in execution.task_runs if run.current == "RUNNING"), None)
    source = running or _latest_completed(execution)
    if source is None:
        return StepDerivation(state=state, step=None)
    return StepDerivation(state=state, step=strip_hierarchy(source.task_id, step_map))


@dataclass(frozen=True)
class StepUpdate:
    """One update delivered to a stream subscriber."""

    state: str
    step: Optional[str]
    step_index: int
    total_steps: int
    error: Optional[str] = None
    candidates_found: Optional[int] = None
    terminal: bool = False

    @property
    def key(self):
        return (self.state, self.step)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class StepTracker:
    """Holds the displayed step for one execution and never lets it regress."""

    def __init__(self, step_map: Optional[Mapping[str, int]] = None):
        self.step_map = dict(step_map or DEFAULT_STEP_MAP)
        self.total_steps = max(self.step_map.values()) if self.step_map else 0
        self.step: Optional[str] = None
        self.step_index = 0

    def _take(self, step: Optional[str]) -> None:
        if step is None:
            return
        index = self.step_map.get(step)
        if index is not None and index > self.step_index:
            self.step = step
            self.step_index = index

    def advance(self, execution: Execution) -> StepUpdate:
        """Fold one polled snapshot into the displayed step."""
        derivation = derive_step(execution, self.step_map)
        step = self.step

        if derivation.step == DONE_STEP:
            self.step = DONE_STEP
            self.step_index = self.total_steps
            step = DONE_STEP
        elif derivation.failed:
            # Report where it failed; the index still never moves backwards
            self._take(derivation.step)
            step = derivation.step
        else:
            self._take(derivation.step)
            step = self.step

        return StepUpdate(
            state=derivation.state,
            step=step,
            step_index=self.step_index,
            total_steps=self.total_steps,
            error=derivation.error,
            candidates_found=_as_int(execution.output("candidates_found", "candidates_count")),
            terminal=derivation.terminal,
        )
