"""
Core value types for workflow execution.

- Context: immutable key/value snapshot threaded through a run
- Step / WorkflowDefinition: static, ordered step declarations
- StepResult / WorkflowResult: trace entries and the run outcome
- StepStatus / WorkflowStatus: status vocabularies
"""

from pyrunbook.core.context import (
    CURRENT_EXECUTION_ID,
    REDACTED,
    Context,
    get_current_execution_id,
    normalize_key,
)
from pyrunbook.core.definition import GUARD_KEY, Step, WorkflowDefinition, define_workflow, step
from pyrunbook.core.result import WorkflowResult
from pyrunbook.core.status import StepStatus, WorkflowStatus
from pyrunbook.core.step_result import StepResult

__all__ = [
    "Context",
    "REDACTED",
    "normalize_key",
    "CURRENT_EXECUTION_ID",
    "get_current_execution_id",
    "Step",
    "step",
    "GUARD_KEY",
    "WorkflowDefinition",
    "define_workflow",
    "StepResult",
    "WorkflowResult",
    "StepStatus",
    "WorkflowStatus",
]
