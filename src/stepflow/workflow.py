"""Workflow definitions and the fluent builder that assembles them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from stepflow.config import WorkflowSettings, get_settings
from stepflow.errors import ExecutionError, ResumeError, WorkflowDefinitionError, WorkflowError
from stepflow.steps.condition import ConditionStep
from stepflow.steps.for_each import ForEachStep
from stepflow.steps.human import HumanStep
from stepflow.steps.parallel import ParallelStep
from stepflow.steps.step import Step
from stepflow.steps.while_loop import WhileStep
from stepflow.types import RunResult
from stepflow.utils.runtime import CancellationSignal, create_run_id
from stepflow.utils.validation import Schema, as_schema

if TYPE_CHECKING:
    from stepflow.inspector import WorkflowGraph
    from stepflow.run import WorkflowRun

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")

Finalize = Callable[[Any], Any]


def _identity(value: Any) -> Any:
    return value


class Workflow(Generic[InputT, OutputT]):
    """An immutable, ordered sequence of steps plus input/output contracts.

    ``branches`` maps a condition step id to the step ids it may branch into.
    Declared targets are skipped by the default sequence flow: a condition
    that does not branch continues after its targets, and a target that
    finishes continues after the last target of its condition.
    """

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        steps: Sequence[Step[Any, Any]],
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
        metadata: Any = None,
        finalize: Finalize | None = None,
        branches: Mapping[str, Iterable[str]] | None = None,
        settings: WorkflowSettings | None = None,
    ) -> None:
        self.id = id
        self.description = description
        self.input_schema: Schema | None = as_schema(input_schema)
        self.output_schema: Schema | None = as_schema(output_schema)
        self._metadata = metadata
        self._finalize = finalize or _identity
        self.settings = settings or get_settings()

        if not steps:
            raise WorkflowDefinitionError(f"Workflow {id} requires at least one step")

        index: dict[str, Step[Any, Any]] = {}
        for step in steps:
            if step.id in index:
                raise WorkflowDefinitionError(f"Duplicate workflow step id {step.id}")
            index[step.id] = step
        self._steps: tuple[Step[Any, Any], ...] = tuple(steps)
        self._index = index
        self._sequence = tuple(index)
        self._positions = {step_id: pos for pos, step_id in enumerate(self._sequence)}

        self._branches, self._branch_owner = self._check_branches(branches or {})
        self._suspended: dict[str, WorkflowRun[InputT, OutputT]] = {}

    def _check_branches(
        self, branches: Mapping[str, Iterable[str]]
    ) -> tuple[Mapping[str, tuple[str, ...]], dict[str, str]]:
        checked: dict[str, tuple[str, ...]] = {}
        owners: dict[str, str] = {}
        for condition_id, raw_targets in branches.items():
            if condition_id not in self._index:
                raise WorkflowDefinitionError(
                    f"Branches declared for unknown condition step {condition_id}"
                )
            targets = tuple(raw_targets)
            if not targets:
                raise WorkflowDefinitionError(
                    f"Condition step {condition_id} is missing branch declarations"
                )
            for target in targets:
                if target not in self._index:
                    raise WorkflowDefinitionError(
                        f"Condition step {condition_id} references unknown branch target {target}"
                    )
                if target == condition_id:
                    raise WorkflowDefinitionError(
                        f"Condition step {condition_id} cannot branch to itself"
                    )
                if target in owners and owners[target] != condition_id:
                    raise WorkflowDefinitionError(
                        f"Step {target} is already a branch of {owners[target]}"
                    )
                owners[target] = condition_id
            checked[condition_id] = targets
        return MappingProxyType(checked), owners

    def __repr__(self) -> str:
        return f"Workflow(id={self.id!r}, steps={list(self._sequence)!r})"

    @property
    def steps(self) -> tuple[Step[Any, Any], ...]:
        return self._steps

    @property
    def sequence(self) -> tuple[str, ...]:
        return self._sequence

    @property
    def entry_id(self) -> str:
        return self._sequence[0]

    @property
    def branches(self) -> Mapping[str, tuple[str, ...]]:
        return self._branches

    @property
    def initial_metadata(self) -> Any:
        return self._metadata

    def get_step(self, step_id: str) -> Step[Any, Any] | None:
        return self._index.get(step_id)

    def has_step(self, step_id: object) -> bool:
        return isinstance(step_id, str) and step_id in self._index

    def next_step_id(self, step_id: str) -> str | None:
        """The step that follows ``step_id`` when no branch redirects control."""

        if step_id in self._branches:
            return self._after_branches(step_id)
        owner = self._branch_owner.get(step_id)
        if owner is not None:
            return self._after_branches(owner)
        position = self._positions[step_id] + 1
        return self._sequence[position] if position < len(self._sequence) else None

    def _after_branches(self, condition_id: str) -> str | None:
        members = set(self._branches[condition_id])
        for candidate in self._sequence[self._positions[condition_id] + 1 :]:
            if candidate not in members:
                return candidate
        return None

    def create_run(self, run_id: str | None = None) -> WorkflowRun[InputT, OutputT]:
        from stepflow.run import WorkflowRun

        return WorkflowRun(
            workflow=self,
            run_id=run_id or create_run_id(self.settings.run_id_prefix),
            settings=self.settings,
        )

    async def run(
        self,
        input_data: Any,
        *,
        metadata: Any = None,
        signal: CancellationSignal | None = None,
    ) -> RunResult[OutputT]:
        return await self.create_run().start(input_data, metadata=metadata, signal=signal)

    def validate_input(self, value: Any) -> InputT:
        if self.input_schema is None:
            return value
        return self.input_schema.validate(value, f"workflow {self.id} input")

    def validate_output(self, value: Any) -> OutputT:
        """Apply ``finalize`` to the last raw step output, then check the output schema."""

        try:
            finalized = self._finalize(value)
        except WorkflowError:
            raise
        except Exception as exc:
            raise ExecutionError(f"Workflow {self.id} finalize failed: {exc}") from exc
        if self.output_schema is None:
            return finalized
        return self.output_schema.validate(finalized, f"workflow {self.id} output")

    def inspect(self) -> WorkflowGraph:
        from stepflow.inspector import inspect_workflow

        return inspect_workflow(self)

    @property
    def suspended_runs(self) -> Mapping[str, WorkflowRun[InputT, OutputT]]:
        return MappingProxyType(self._suspended)

    def _park(self, run: WorkflowRun[InputT, OutputT]) -> None:
        self._suspended[run.run_id] = run

    def _unpark(self, run: WorkflowRun[InputT, OutputT]) -> None:
        self._suspended.pop(run.run_id, None)

    async def resume_with_human_input(
        self, run_id: str, step_id: str, data: Any
    ) -> RunResult[OutputT]:
        """Resume a run parked on ``step_id``, using ``data`` as that step's output."""

        run = self._suspended.get(run_id)
        if run is None:
            raise ResumeError(f"Workflow {self.id} has no suspended run {run_id}")
        return await run.resume_with_human_input(step_id=step_id, data=data, run_id=run_id)


class ConditionalBuilder:
    def __init__(self, parent: WorkflowBuilder, condition_id: str) -> None:
        self._parent = parent
        self._condition_id = condition_id

    def then(self, *targets: Step[Any, Any]) -> WorkflowBuilder:
        """Append ``targets`` after the condition and register them as its branches."""

        if not targets:
            raise WorkflowDefinitionError("Conditional builder requires at least one branch step")
        return self._parent._register_branches(self._condition_id, targets)


class WorkflowBuilder:
    """Fluent assembly of a ``Workflow``; ``commit()`` freezes it."""

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
        metadata: Any = None,
        finalize: Finalize | None = None,
        settings: WorkflowSettings | None = None,
    ) -> None:
        self._config: dict[str, Any] = {
            "id": id,
            "description": description,
            "input_schema": input_schema,
            "output_schema": output_schema,
            "metadata": metadata,
            "finalize": finalize,
            "settings": settings,
        }
        self._steps: list[Step[Any, Any]] = []
        self._ids: set[str] = set()
        self._branches: dict[str, tuple[str, ...]] = {}
        self._open_conditions: set[str] = set()

    def _append(self, step: Step[Any, Any]) -> None:
        if step.id in self._ids:
            raise WorkflowDefinitionError(f"Duplicate workflow step id {step.id}")
        self._ids.add(step.id)
        self._steps.append(step)

    def then(self, step: Step[Any, Any]) -> WorkflowBuilder:
        self._append(step)
        return self

    def conditions(self, step: Step[Any, Any]) -> ConditionalBuilder:
        self._append(step)
        self._open_conditions.add(step.id)
        return ConditionalBuilder(self, step.id)

    def _register_branches(
        self, condition_id: str, targets: Sequence[Step[Any, Any]]
    ) -> WorkflowBuilder:
        if condition_id in self._branches:
            raise WorkflowDefinitionError(
                f"Condition step {condition_id} already has branches registered"
            )
        for target in targets:
            self._append(target)
        self._branches[condition_id] = tuple(target.id for target in targets)
        self._open_conditions.discard(condition_id)
        return self

    def condition(self, **kwargs: Any) -> ConditionalBuilder:
        return self.conditions(ConditionStep(**kwargs))

    def for_each(self, step: ForEachStep | None = None, **kwargs: Any) -> WorkflowBuilder:
        return self.then(step or ForEachStep(**kwargs))

    def while_(self, step: WhileStep | None = None, **kwargs: Any) -> WorkflowBuilder:
        return self.then(step or WhileStep(**kwargs))

    def parallel(self, step: ParallelStep | None = None, **kwargs: Any) -> WorkflowBuilder:
        return self.then(step or ParallelStep(**kwargs))

    def human(self, step: HumanStep | None = None, **kwargs: Any) -> WorkflowBuilder:
        return self.then(step or HumanStep(**kwargs))

    def commit(self) -> Workflow[Any, Any]:
        if not self._steps:
            raise WorkflowDefinitionError("Cannot commit a workflow without steps")
        if self._open_conditions:
            missing = ", ".join(sorted(self._open_conditions))
            raise WorkflowDefinitionError(f"Condition step {missing} is missing branch declarations")

        workflow: Workflow[Any, Any] = Workflow(
            steps=list(self._steps), branches=dict(self._branches), **self._config
        )
        logger.debug(
            "Workflow committed",
            extra={"workflow_id": workflow.id, "steps": len(workflow.steps)},
        )
        return workflow


def create_workflow(**config: Any) -> WorkflowBuilder:
    return WorkflowBuilder(**config)
