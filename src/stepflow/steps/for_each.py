"""Bounded-concurrency fan-out of one step over a collection.

Workers claim item indexes from a single shared counter, so no index is
processed twice. Results land in a pre-sized list, which keeps the output in
input order regardless of completion order.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import AsyncIterable, Callable, Iterable
from typing import Any, ClassVar

from stepflow.config import get_settings
from stepflow.errors import AbortError, ExecutionError
from stepflow.types import RunContext, StepSuspended
from stepflow.utils.runtime import gather_fail_fast

from .step import Step, maybe_await

logger = logging.getLogger(__name__)

ItemsFn = Callable[[Any, RunContext], Any]
CollectFn = Callable[[list[Any]], Any]


def _items_from_input(input: Any, _context: RunContext) -> Any:  # noqa: A002
    return input


async def _materialize(items: Any) -> list[Any]:
    if isinstance(items, AsyncIterable):
        return [item async for item in items]
    if isinstance(items, Iterable):
        return list(items)
    raise TypeError(f"For-each items must be iterable, got {type(items).__name__}")


class ForEachStep(Step[Any, Any]):
    kind: ClassVar[str] = "for_each"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        item_step: Step[Any, Any],
        items: ItemsFn | None = None,
        concurrency: int | None = None,
        collect: CollectFn | None = None,
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
        self.item_step = item_step
        self.items = items or _items_from_input
        self.concurrency = concurrency
        self.collect = collect

    def children(self) -> tuple[Step[Any, Any], ...]:
        return (self.item_step,)

    def _worker_count(self, total: int) -> int:
        raw = self.concurrency if self.concurrency is not None else get_settings().default_concurrency
        return min(max(1, int(raw)), total)

    async def _run(self, input: Any, context: RunContext) -> Any:  # noqa: A002
        items = await _materialize(await maybe_await(self.items(input, context)))
        total = len(items)
        results: list[Any] = [None] * total
        claims = itertools.count()
        item_context = context.child(self.item_step.id)

        async def worker() -> None:
            while True:
                context.signal.raise_if_aborted()
                index = next(claims)
                if index >= total:
                    return
                try:
                    outcome = await self.item_step.execute(items[index], item_context)
                except (AbortError, StepSuspended):
                    raise
                except Exception as exc:
                    raise ExecutionError(
                        f"For-each step {self.id} failed while processing item at index {index}",
                        step_id=self.id,
                        index=index,
                    ) from exc
                results[index] = outcome.output

        workers = self._worker_count(total) if total else 0
        logger.debug(
            "For-each fan-out",
            extra={"step_id": self.id, "items": total, "workers": workers},
        )
        await gather_fail_fast([worker() for _ in range(workers)])

        if self.collect is not None:
            return await maybe_await(self.collect(results))
        return results

    def _clone_kwargs(self) -> dict[str, Any]:
        kwargs = super()._clone_kwargs()
        del kwargs["handler"]
        kwargs.update(
            item_step=self.item_step,
            items=self.items,
            concurrency=self.concurrency,
            collect=self.collect,
        )
        return kwargs


def create_for_each_step(**kwargs: Any) -> ForEachStep:
    return ForEachStep(**kwargs)
