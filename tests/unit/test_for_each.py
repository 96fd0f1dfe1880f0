"""Unit tests for the for-each step."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from stepflow.errors import AbortError, ExecutionError
from stepflow.steps import ForEachStep, create_for_each_step, create_step
from stepflow.types import RunContext
from stepflow.utils.runtime import CancellationController

ContextFactory = Callable[..., RunContext]


class ConcurrencyProbe:
    """Tracks how many item handlers are in flight at once."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    async def double(self, value: int, _ctx: RunContext) -> int:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            # Later items finish first.
            await asyncio.sleep(0.005 * (6 - value))
            return value * 2
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_results_keep_input_order(make_context: ContextFactory) -> None:
    probe = ConcurrencyProbe()
    step = create_for_each_step(
        id="double-all",
        item_step=create_step(id="double", handler=probe.double),
        concurrency=2,
    )

    outcome = await step.execute([1, 2, 3, 4, 5], make_context())

    assert outcome.output == [2, 4, 6, 8, 10]
    assert probe.peak == 2


@pytest.mark.asyncio
async def test_concurrency_is_clamped(make_context: ContextFactory) -> None:
    probe = ConcurrencyProbe()
    step = ForEachStep(
        id="double-all",
        item_step=create_step(id="double", handler=probe.double),
        concurrency=0,
    )

    outcome = await step.execute([1, 2, 3], make_context())

    assert outcome.output == [2, 4, 6]
    assert probe.peak == 1


@pytest.mark.asyncio
async def test_empty_collection(make_context: ContextFactory) -> None:
    calls: list[Any] = []
    step = ForEachStep(
        id="each",
        item_step=create_step(id="item", handler=lambda v, _c: calls.append(v)),
        concurrency=4,
    )

    outcome = await step.execute([], make_context())

    assert outcome.output == []
    assert calls == []


@pytest.mark.asyncio
async def test_item_failure_names_index_and_owner(make_context: ContextFactory) -> None:
    started: list[int] = []

    async def handler(value: int, _ctx: RunContext) -> int:
        started.append(value)
        await asyncio.sleep(0.001)
        if value == 3:
            raise ValueError("bad item")
        return value

    step = ForEachStep(
        id="each",
        item_step=create_step(id="item", handler=handler),
        concurrency=2,
    )

    with pytest.raises(ExecutionError) as excinfo:
        await step.execute([1, 2, 3, 4, 5], make_context())

    assert excinfo.value.step_id == "each"
    assert excinfo.value.index == 2
    item_error = excinfo.value.cause
    assert isinstance(item_error, ExecutionError)
    assert item_error.step_id == "item"
    assert isinstance(item_error.cause, ValueError)
    assert 3 in started


@pytest.mark.asyncio
async def test_abort_stops_claiming_items(
    make_context: ContextFactory, controller: CancellationController
) -> None:
    processed: list[int] = []

    def handler(value: int, _ctx: RunContext) -> int:
        processed.append(value)
        if value == 2:
            controller.abort("enough")
        return value

    step = ForEachStep(id="each", item_step=create_step(id="item", handler=handler), concurrency=1)

    with pytest.raises(AbortError) as excinfo:
        await step.execute([1, 2, 3, 4], make_context())

    assert excinfo.value is controller.signal.reason
    assert processed == [1, 2]


@pytest.mark.asyncio
async def test_items_selector_and_collect(make_context: ContextFactory) -> None:
    async def numbers(payload: dict[str, Any], _ctx: RunContext) -> AsyncIterator[int]:
        async def generate() -> AsyncIterator[int]:
            for value in payload["values"]:
                yield value

        return generate()

    step = ForEachStep(
        id="sum",
        items=numbers,
        item_step=create_step(id="square", handler=lambda v, _c: v * v),
        collect=sum,
        concurrency=3,
    )

    outcome = await step.execute({"values": [1, 2, 3]}, make_context())

    assert outcome.output == 14
    assert outcome.input == {"values": [1, 2, 3]}


@pytest.mark.asyncio
async def test_non_iterable_items_fail(make_context: ContextFactory) -> None:
    step = ForEachStep(id="each", item_step=create_step(id="item", handler=lambda v, _c: v))

    with pytest.raises(ExecutionError) as excinfo:
        await step.execute(42, make_context())

    assert excinfo.value.step_id == "each"
    assert isinstance(excinfo.value.cause, TypeError)


@pytest.mark.asyncio
async def test_item_steps_share_the_run_store(make_context: ContextFactory) -> None:
    def record(value: str, ctx: RunContext) -> str:
        ctx.store.setdefault("seen", []).append(value)
        return value

    ctx = make_context()
    step = ForEachStep(id="each", item_step=create_step(id="item", handler=record), concurrency=2)

    await step.execute(["a", "b", "c"], ctx)

    assert sorted(ctx.store["seen"]) == ["a", "b", "c"]


def test_clone_keeps_configuration() -> None:
    item = create_step(id="item", handler=lambda v, _c: v)
    step = ForEachStep(id="each", item_step=item, concurrency=3)

    copy = step.clone(id="each-2")

    assert isinstance(copy, ForEachStep)
    assert copy.item_step is item
    assert copy.concurrency == 3
    assert step.children() == (item,)
