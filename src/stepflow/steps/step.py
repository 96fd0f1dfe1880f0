"""The step abstraction.

A step validates its input, runs its handler and validates the output.
Composite steps (condition, for-each, while, parallel, human) subclass
``Step``; the run drives every kind through the same ``execute`` /
``resolve_branch`` / ``parse_resume`` interface.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, Generic, TypeVar

from stepflow.errors import ExecutionError, WorkflowError
from stepflow.types import END, RunContext, StepResult, StepSuspended, StepTransition, _End
from stepflow.utils.validation import Schema, as_schema

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")
T = TypeVar("T")

StepHandler = Callable[[Any, RunContext], Any]
BranchResolver = Callable[[StepTransition], Any]


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Await ``value`` when a sync-or-async callable handed back an awaitable."""

    if inspect.isawaitable(value):
        return await value
    return value


class Step(Generic[InputT, OutputT]):
    """An atomic unit of work with an optional input and output schema."""

    kind: ClassVar[str] = "step"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002 (public field name)
        handler: StepHandler,
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> None:
        if not id:
            raise ValueError("Step id must be a non-empty string")
        self.id = id
        self.description = description
        self.handler = handler
        self._input_schema_source = input_schema
        self._output_schema_source = output_schema
        self.input_schema: Schema | None = as_schema(input_schema)
        self.output_schema: Schema | None = as_schema(output_schema)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    def validate_input(self, value: Any) -> InputT:
        if self.input_schema is None:
            return value
        return self.input_schema.validate(value, f"step {self.id} input")

    def validate_output(self, value: Any) -> OutputT:
        if self.output_schema is None:
            return value
        return self.output_schema.validate(value, f"step {self.id} output")

    async def execute(self, input: Any, context: RunContext) -> StepResult[InputT, OutputT]:  # noqa: A002
        """Validate, run the handler, validate.

        Exceptions outside the engine taxonomy are wrapped into an
        ``ExecutionError`` carrying this step's id. Engine errors and
        suspension requests propagate unchanged.
        """

        validated_input = self.validate_input(input)
        try:
            raw = await maybe_await(self.handler(validated_input, context))
        except StepSuspended as request:
            # Outermost step wins: the run parks on the step it is driving.
            request.input = validated_input
            raise
        except WorkflowError:
            raise
        except Exception as exc:
            logger.debug(
                "Step handler raised",
                extra={"step_id": self.id, "error": type(exc).__name__},
            )
            raise ExecutionError(f"Step {self.id} failed: {exc}", step_id=self.id) from exc

        return StepResult(input=validated_input, output=self.validate_output(raw))

    async def resolve_branch(self, transition: StepTransition) -> str | _End | None:
        """Pick the next step id. Plain steps defer to the sequence order."""

        return None

    def parse_resume(self, data: Any) -> OutputT:
        """Validate externally supplied data that stands in for this step's output."""

        return self.validate_output(data)

    def children(self) -> tuple[Step[Any, Any], ...]:
        """Nested steps driven internally by a composite step."""

        return ()

    def _clone_kwargs(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "handler": self.handler,
            "description": self.description,
            "input_schema": self._input_schema_source,
            "output_schema": self._output_schema_source,
        }

    def clone(self, **overrides: Any) -> Step[InputT, OutputT]:
        """Return a copy with some constructor arguments replaced."""

        kwargs = self._clone_kwargs()
        unknown = set(overrides) - set(kwargs)
        if unknown:
            raise TypeError(f"Unknown step attributes: {', '.join(sorted(unknown))}")
        kwargs.update(overrides)
        return type(self)(**kwargs)


def create_step(
    *,
    id: str,  # noqa: A002
    handler: StepHandler,
    description: str | None = None,
    input_schema: Any = None,
    output_schema: Any = None,
) -> Step[Any, Any]:
    return Step(
        id=id,
        handler=handler,
        description=description,
        input_schema=input_schema,
        output_schema=output_schema,
    )


__all__ = [
    "END",
    "BranchResolver",
    "Step",
    "StepHandler",
    "create_step",
    "maybe_await",
]
