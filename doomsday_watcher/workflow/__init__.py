"""
Workflow engine integration: removal submission and execution streaming.
"""

from .client import WorkflowClient
from .models import Execution, TaskRun
from .steps import DEFAULT_STEP_MAP, StepTracker, StepUpdate, derive_step, strip_hierarchy
from .stream import ExecutionStreamTranslator, StreamRegistry, SubscriptionTracker

__all__ = [
    "DEFAULT_STEP_MAP",
    "Execution",
    "ExecutionStreamTranslator",
    "StepTracker",
    "StepUpdate",
    "StreamRegistry",
    "SubscriptionTracker",
    "TaskRun",
    "WorkflowClient",
    "derive_step",
    "strip_hierarchy",
]
