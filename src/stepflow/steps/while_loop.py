"""Bounded conditional loop driven by a condition step and a body step."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, ClassVar

from stepflow.errors import AbortError, ExecutionError
from stepflow.types import RunContext, StepSuspended, WhileLoopState

from .step import Step, maybe_await

logger = logging.getLogger(__name__)

WhileCollectFn = Callable[[list[Any]], Any]


class WhileStep(Step[Any, Any]):
    """Run ``body`` while ``condition`` returns ``True``.

    Both nested steps receive a ``WhileLoopState``. The condition must return
    a real ``bool``; ``max_iterations`` bounds the number of body runs.
    Cancellation is observed between iterations only.
    """

    kind: ClassVar[str] = "while"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        condition: Step[Any, Any],
        body: Step[Any, Any],
        max_iterations: int,
        collect: WhileCollectFn | None = None,
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> None:
        super().__init__(
            id=id,
            handler=self._run,
            description=description,
            input_schema=input_schema,
            output_schema=output_schema,
        )
        self.condition = condition
        self.body = body
        self.max_iterations = max_iterations
        self.collect = collect

    def children(self) -> tuple[Step[Any, Any], ...]:
        return (self.condition, self.body)

    async def _run(self, input: Any, context: RunContext) -> Any:  # noqa: A002
        if (
            isinstance(self.max_iterations, bool)
            or not isinstance(self.max_iterations, int)
            or self.max_iterations <= 0
        ):
            raise ExecutionError(
                f"While step {self.id} requires a positive integer maxIterations value",
                step_id=self.id,
            )

        condition_context = context.child(self.condition.id)
        body_context = context.child(self.body.id)
        outputs: list[Any] = []
        state: WhileLoopState[Any, Any] = WhileLoopState(iteration=0, initial_input=input)

        while True:
            context.signal.raise_if_aborted()

            verdict = (await self.condition.execute(state, condition_context)).output
            if not isinstance(verdict, bool):
                raise ExecutionError(
                    f"While step {self.id} condition returned {type(verdict).__name__}, "
                    "expected bool",
                    step_id=self.id,
                    index=state.iteration,
                )
            if not verdict:
                break

            if state.iteration >= self.max_iterations:
                raise ExecutionError(
                    f"While step {self.id} exceeded maxIterations ({self.max_iterations})",
                    step_id=self.id,
                    index=state.iteration,
                )

            try:
                output = (await self.body.execute(state, body_context)).output
            except (AbortError, StepSuspended):
                raise
            except Exception as exc:
                raise ExecutionError(
                    f"While step {self.id} failed at iteration {state.iteration}",
                    step_id=self.id,
                    index=state.iteration,
                ) from exc

            outputs.append(output)
            state = WhileLoopState(
                iteration=state.iteration + 1,
                initial_input=input,
                last_output=output,
            )

        logger.debug(
            "While loop finished",
            extra={"step_id": self.id, "iterations": state.iteration},
        )
        if self.collect is not None:
            return await maybe_await(self.collect(outputs))
        return state.last_output if outputs else input

    def _clone_kwargs(self) -> dict[str, Any]:
        kwargs = super()._clone_kwargs()
        del kwargs["handler"]
        kwargs.update(
            condition=self.condition,
            body=self.body,
            max_iterations=self.max_iterations,
            collect=self.collect,
        )
        return kwargs


def create_while_step(**kwargs: Any) -> WhileStep:
    return WhileStep(**kwargs)
