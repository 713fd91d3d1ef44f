"""
Decoded view of a workflow engine execution.

Only the fields the stream translator reads are modelled; everything else in
the engine's payload is ignored.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SUCCESS_STATES = frozenset({"SUCCESS"})
FAILURE_STATES = frozenset({"FAILED", "KILLED"})
TERMINAL_STATES = SUCCESS_STATES | FAILURE_STATES


class StateHistory(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: str
    date: Optional[datetime] = None


class ExecutionStateInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current: str = "CREATED"
    histories: List[StateHistory] = Field(default_factory=list)
    duration: Optional[str] = None


class TaskRun(BaseModel):
    """One task-run record. The engine may report duplicates and in any order."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    task_id: str = Field(alias="taskId")
    state: ExecutionStateInfo = Field(default_factory=ExecutionStateInfo)
    outputs: Optional[Dict[str, Any]] = None

    @property
    def current(self) -> str:
        return self.state.current

    def last_transition_at(self) -> Optional[datetime]:
        """Timestamp of the latest state-history entry, if any."""
        dates = [h.date for h in self.state.histories if h.date is not None]
        return max(dates) if dates else None


class Execution(BaseModel):
    """Polled execution resource."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    state: ExecutionStateInfo = Field(default_factory=ExecutionStateInfo)
    task_runs: List[TaskRun] = Field(default_factory=list, alias="taskRunList")
    outputs: Optional[Dict[str, Any]] = None

    @property
    def current(self) -> str:
        return self.state.current

    @property
    def is_terminal(self) -> bool:
        return self.current in TERMINAL_STATES

    def output(self, *names: str) -> Any:
        """First non-null declared output among ``names``."""
        for name in names:
            value = (self.outputs or {}).get(name)
            if value is not None:
                return value
        return None
