"""stepflow.

An asyncio workflow engine:
- steps with schema-validated input and output
- condition branching, bounded for-each fan-out, bounded while loops
- cooperative cancellation and suspend/resume for human input
"""

__version__ = "0.1.0"

from stepflow.config import WorkflowSettings, get_settings
from stepflow.errors import (
    AbortError,
    BranchResolutionError,
    ExecutionError,
    IllegalTransitionError,
    ResumeError,
    SchemaError,
    WorkflowDefinitionError,
    WorkflowError,
)
from stepflow.inspector import WorkflowGraph, inspect_workflow, render_workflow_graph_json
from stepflow.run import RunStream, WorkflowRun
from stepflow.state_machine import RunStatus
from stepflow.steps import (
    ConditionStep,
    ForEachStep,
    HumanForm,
    HumanStep,
    ParallelStep,
    SelectField,
    Step,
    TextField,
    WhileStep,
    create_condition_step,
    create_for_each_step,
    create_step,
    create_while_step,
)
from stepflow.types import (
    END,
    PendingHumanTask,
    RunContext,
    RunResult,
    StepSnapshot,
    StepTransition,
    WhileLoopState,
    WorkflowEvent,
    WorkflowEventType,
)
from stepflow.utils import (
    CancellationController,
    CancellationSignal,
    clone_metadata,
    merge_signals,
    parse_with_schema,
)
from stepflow.workflow import Workflow, WorkflowBuilder, create_workflow

__all__ = [
    "END",
    "AbortError",
    "BranchResolutionError",
    "CancellationController",
    "CancellationSignal",
    "ConditionStep",
    "ExecutionError",
    "ForEachStep",
    "HumanForm",
    "HumanStep",
    "IllegalTransitionError",
    "ParallelStep",
    "PendingHumanTask",
    "ResumeError",
    "RunContext",
    "RunResult",
    "RunStatus",
    "RunStream",
    "SchemaError",
    "SelectField",
    "Step",
    "StepSnapshot",
    "StepTransition",
    "TextField",
    "WhileLoopState",
    "WhileStep",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowDefinitionError",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowGraph",
    "WorkflowRun",
    "WorkflowSettings",
    "__version__",
    "clone_metadata",
    "create_condition_step",
    "create_for_each_step",
    "create_step",
    "create_while_step",
    "create_workflow",
    "get_settings",
    "inspect_workflow",
    "merge_signals",
    "parse_with_schema",
    "render_workflow_graph_json",
]
