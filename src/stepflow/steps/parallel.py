"""Parallel step: run several child steps on the same input at once."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from stepflow.errors import AbortError, ExecutionError
from stepflow.types import RunContext, StepSuspended
from stepflow.utils.runtime import gather_fail_fast

from .step import Step


class ParallelStep(Step[Any, dict[str, Any]]):
    """Run several steps on the same input concurrently; returns ``{key: output}``."""

    kind: ClassVar[str] = "parallel"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        steps: Mapping[str, Step[Any, Any]],
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> None:
        if not steps:
            raise ValueError(f"Parallel step {id} requires at least one child step")
        super().__init__(
            id=id,
            handler=self._run,
            description=description,
            input_schema=input_schema,
            output_schema=output_schema,
        )
        self.steps = dict(steps)

    def children(self) -> tuple[Step[Any, Any], ...]:
        return tuple(self.steps.values())

    async def _run(self, input: Any, context: RunContext) -> dict[str, Any]:  # noqa: A002
        async def run_child(key: str, step: Step[Any, Any]) -> Any:
            try:
                return (await step.execute(input, context.child(step.id))).output
            except (AbortError, StepSuspended):
                raise
            except Exception as exc:
                raise ExecutionError(
                    f"Parallel step {self.id} failed during child step {key}",
                    step_id=self.id,
                ) from exc

        context.signal.raise_if_aborted()
        keys = list(self.steps)
        outputs = await gather_fail_fast([run_child(key, self.steps[key]) for key in keys])
        return dict(zip(keys, outputs, strict=True))

    def _clone_kwargs(self) -> dict[str, Any]:
        kwargs = super()._clone_kwargs()
        del kwargs["handler"]
        kwargs["steps"] = self.steps
        return kwargs
