"""Condition step: produce an output and pick the step that runs next."""

from __future__ import annotations

from typing import Any, ClassVar

from stepflow.types import RunContext, StepTransition, _End

from .step import BranchResolver, Step, StepHandler, maybe_await


def _passthrough(input: Any, _context: RunContext) -> Any:  # noqa: A002
    return input


class ConditionStep(Step[Any, Any]):
    """A step that also decides which step runs next.

    ``resolve_branch`` receives the validated input and output and returns a
    step id, ``END`` to finish the run with the current output, or ``None``
    to continue in sequence. The handler defaults to passing its input through.
    """

    kind: ClassVar[str] = "condition"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        resolve_branch: BranchResolver,
        handler: StepHandler | None = None,
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> None:
        super().__init__(
            id=id,
            handler=handler or _passthrough,
            description=description,
            input_schema=input_schema,
            output_schema=output_schema,
        )
        self.resolver = resolve_branch

    async def resolve_branch(self, transition: StepTransition) -> str | _End | None:
        return await maybe_await(self.resolver(transition))

    def _clone_kwargs(self) -> dict[str, Any]:
        kwargs = super()._clone_kwargs()
        kwargs["resolve_branch"] = self.resolver
        return kwargs


def create_condition_step(**kwargs: Any) -> ConditionStep:
    return ConditionStep(**kwargs)
