#!/usr/bin/env python3
"""Programmatic workflow example.

This demonstrates the engine end to end:

* load settings from the environment / `.env`
* build a workflow with a condition step and a bounded for-each fan-out
* suspend on a human step and resume it with an answer

The order lines are passed as arguments, e.g. ``--line A-1:2 --line B-7:40``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Sequence

from pydantic import BaseModel

from stepflow import (
    END,
    ForEachStep,
    HumanForm,
    HumanStep,
    RunContext,
    RunStatus,
    StepTransition,
    Workflow,
    create_condition_step,
    create_step,
    create_workflow,
)
from stepflow.config import WorkflowSettings
from stepflow.steps.human import select


class OrderLine(BaseModel):
    sku: str
    quantity: int


class Order(BaseModel):
    lines: list[OrderLine]


class Approval(BaseModel):
    approved: bool


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Price an order and ask for approval.")
    parser.add_argument(
        "--line",
        action="append",
        required=True,
        help='Order line in the form "SKU:QUANTITY" (repeatable)',
    )
    parser.add_argument(
        "--approve",
        choices=["yes", "no"],
        default="yes",
        help="Answer given to the approval step",
    )
    return parser.parse_args(argv)


async def _price(line: OrderLine, ctx: RunContext) -> float:
    await asyncio.sleep(0.01)
    ctx.emit("priced", {"sku": line.sku})
    return line.quantity * 9.5


def _route(transition: StepTransition) -> Any:
    # Small orders skip approval.
    return "approve" if transition.output > 100 else END


def build_workflow(settings: WorkflowSettings) -> Workflow[Any, Any]:
    return (
        create_workflow(id="price-order", input_schema=Order, output_schema=float, settings=settings)
        .for_each(
            ForEachStep(
                id="price-lines",
                items=lambda order, _ctx: order.lines,
                item_step=create_step(id="price-line", handler=_price, input_schema=OrderLine),
                concurrency=4,
                collect=sum,
            )
        )
        .conditions(create_condition_step(id="check-total", resolve_branch=_route))
        .then(
            HumanStep(
                id="approve",
                form=HumanForm(
                    title="Approve large order",
                    fields=[select(id="approved", label="Approve?", options=["yes", "no"])],
                ),
                response_schema=Approval,
            )
        )
        .then(
            create_step(
                id="apply-decision",
                handler=lambda approval, ctx: ctx.history["price-lines"].output
                if approval.approved
                else 0.0,
            )
        )
        .commit()
    )


async def _main(args: argparse.Namespace) -> int:
    settings = WorkflowSettings()
    settings.setup_logging()

    lines = []
    for raw in args.line:
        sku, _, quantity = raw.partition(":")
        lines.append({"sku": sku, "quantity": quantity or "1"})

    workflow = build_workflow(settings)
    print(json.dumps(json.loads(workflow.inspect().model_dump_json(by_alias=True)), indent=2))

    run = workflow.create_run()
    result = await run.start({"lines": lines})

    if result.status is RunStatus.SUSPENDED and result.pending_human is not None:
        task = result.pending_human
        print(f"Run {task.run_id} is waiting on {task.step_id}; answering {args.approve!r}")
        result = await workflow.resume_with_human_input(
            task.run_id, task.step_id, {"approved": args.approve}
        )

    print(f"Status: {result.status.value}")
    if result.error is not None:
        print(f"Error: {result.error}")
        return 1
    print(f"Total: {result.result}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    return asyncio.run(_main(_parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
