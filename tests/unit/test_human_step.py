"""Unit tests for suspension and human-input resumption."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from pydantic import BaseModel, ValidationError

from stepflow import (
    AbortError,
    HumanForm,
    HumanStep,
    ResumeError,
    RunStatus,
    SchemaError,
    Workflow,
    WorkflowEvent,
    WorkflowEventType,
    create_step,
    create_workflow,
)
from stepflow.config import WorkflowSettings
from stepflow.steps.human import select, text
from stepflow.types import PendingHumanTask, RunContext
from stepflow.utils.runtime import CancellationController

Recorder = Callable[[WorkflowEvent], None]


class Approval(BaseModel):
    approved: bool
    comment: str = ""


def _publish(approval: Approval, _ctx: RunContext) -> str:
    return "published" if approval.approved else "rejected"


def _approval_workflow(settings: WorkflowSettings, calls: list[str] | None = None) -> Workflow[Any, Any]:
    def draft(value: str, _ctx: RunContext) -> dict[str, str]:
        if calls is not None:
            calls.append("draft")
        return {"text": value}

    return (
        create_workflow(id="review", settings=settings)
        .then(create_step(id="draft", handler=draft))
        .human(
            id="approve",
            form=HumanForm(
                title="Approve draft",
                fields=[
                    select(id="approved", label="Decision", options=["yes", "no"], required=True),
                    text(id="comment", label="Comment"),
                ],
            ),
            payload=lambda value, history, _ctx: {
                "draft": value["text"],
                "seen": sorted(history),
            },
            response_schema=Approval,
        )
        .then(create_step(id="publish", handler=_publish))
        .commit()
    )


@pytest.mark.asyncio
async def test_human_step_suspends_the_run(
    settings: WorkflowSettings, recorder: Recorder, events: list[WorkflowEvent]
) -> None:
    workflow = _approval_workflow(settings)
    run = workflow.create_run()
    run.watch(recorder)

    result = await run.start("hello")

    assert result.status is RunStatus.SUSPENDED
    assert run.status is RunStatus.SUSPENDED
    task = result.pending_human
    assert isinstance(task, PendingHumanTask)
    assert task.step_id == "approve"
    assert task.run_id == run.run_id
    assert task.payload == {"draft": "hello", "seen": ["draft"]}
    assert task.form is not None
    assert [f.type for f in task.form.fields] == ["select", "text"]
    assert run.pending_human == task
    assert workflow.suspended_runs[run.run_id] is run
    assert result.steps["approve"][0].status == "suspended"
    assert events[-1].type is WorkflowEventType.WORKFLOW_SUSPENDED
    assert events[-2].type is WorkflowEventType.STEP_HUMAN_REQUESTED


@pytest.mark.asyncio
async def test_resume_through_the_workflow(settings: WorkflowSettings) -> None:
    calls: list[str] = []
    workflow = _approval_workflow(settings, calls)
    run = workflow.create_run()
    await run.start("hello")

    result = await workflow.resume_with_human_input(run.run_id, "approve", {"approved": True})

    assert result.status is RunStatus.COMPLETED
    assert result.result == "published"
    assert calls == ["draft"]
    assert result.steps["approve"][0].status == "success"
    assert result.steps["approve"][0].output == Approval(approved=True)
    assert result.steps["approve"][0].input == {"text": "hello"}
    assert run.pending_human is None
    assert dict(workflow.suspended_runs) == {}


@pytest.mark.asyncio
async def test_resume_through_the_run(
    settings: WorkflowSettings, recorder: Recorder, events: list[WorkflowEvent]
) -> None:
    run = _approval_workflow(settings).create_run()
    await run.start("hello")
    run.watch(recorder)

    result = await run.resume_with_human_input(step_id="approve", data={"approved": False})

    assert result.result == "rejected"
    assert events[0].type is WorkflowEventType.STEP_HUMAN_COMPLETED
    assert events[0].data["response"] == Approval(approved=False)


@pytest.mark.asyncio
async def test_invalid_response_keeps_run_suspended(settings: WorkflowSettings) -> None:
    workflow = _approval_workflow(settings)
    run = workflow.create_run()
    await run.start("hello")

    with pytest.raises(SchemaError) as excinfo:
        await workflow.resume_with_human_input(run.run_id, "approve", {"approved": "maybe"})

    assert isinstance(excinfo.value.cause, ValidationError)
    assert run.status is RunStatus.SUSPENDED
    assert run.run_id in workflow.suspended_runs

    result = await workflow.resume_with_human_input(run.run_id, "approve", {"approved": "yes"})
    assert result.result == "published"


@pytest.mark.asyncio
async def test_resume_errors(settings: WorkflowSettings) -> None:
    workflow = _approval_workflow(settings)
    run = workflow.create_run()

    with pytest.raises(ResumeError, match="not been started"):
        await run.resume_with_human_input(step_id="approve", data={})

    await run.start("hello")

    with pytest.raises(ResumeError, match="received publish"):
        await run.resume_with_human_input(step_id="publish", data={})
    with pytest.raises(ResumeError):
        await run.resume_with_human_input(step_id="approve", data={}, run_id="other")
    with pytest.raises(ResumeError, match="no suspended run"):
        await workflow.resume_with_human_input("run_unknown", "approve", {})

    await run.resume_with_human_input(step_id="approve", data={"approved": True})
    with pytest.raises(ResumeError, match="No human interaction"):
        await run.resume_with_human_input(step_id="approve", data={"approved": True})


@pytest.mark.asyncio
async def test_cancel_while_suspended_aborts_immediately(settings: WorkflowSettings) -> None:
    workflow = _approval_workflow(settings)
    run = workflow.create_run()
    await run.start("hello")

    run.cancel("nobody answered")

    assert run.status is RunStatus.ABORTED
    assert run.result is not None
    assert isinstance(run.result.error, AbortError)
    assert str(run.result.error) == "nobody answered"
    assert dict(workflow.suspended_runs) == {}
    with pytest.raises(ResumeError):
        await run.resume_with_human_input(step_id="approve", data={"approved": True})


@pytest.mark.asyncio
async def test_external_abort_is_observed_on_resume(settings: WorkflowSettings) -> None:
    controller = CancellationController()
    run = _approval_workflow(settings).create_run()
    await run.start("hello", signal=controller.signal)

    controller.abort("deadline passed")

    with pytest.raises(AbortError) as excinfo:
        await run.resume_with_human_input(step_id="approve", data={"approved": True})
    assert excinfo.value is controller.signal.reason
    assert run.status is RunStatus.ABORTED


@pytest.mark.asyncio
async def test_form_builder_and_output_schema(settings: WorkflowSettings) -> None:
    def build_form(ctx: RunContext) -> HumanForm:
        return HumanForm(title=f"Rate run {ctx.run_id}", fields=[text(id="score", label="Score")])

    workflow = Workflow(
        id="rating",
        steps=[HumanStep(id="rate", form=build_form, output_schema=int)],
        settings=settings,
    )
    run = workflow.create_run("run_rating")

    suspended = await run.start({"subject": "x"})
    assert suspended.pending_human is not None
    assert suspended.pending_human.form is not None
    assert suspended.pending_human.form.title == "Rate run run_rating"
    assert suspended.pending_human.payload == {"subject": "x"}

    with pytest.raises(SchemaError):
        await run.resume_with_human_input(step_id="rate", data="not a number")
    result = await run.resume_with_human_input(step_id="rate", data="5")

    assert result.result == 5


def test_select_field_requires_options() -> None:
    with pytest.raises(ValidationError):
        select(id="choice", label="Choice", options=[])


@pytest.mark.asyncio
async def test_stream_stays_open_until_resumed_run_finishes(settings: WorkflowSettings) -> None:
    workflow = _approval_workflow(settings)
    run = workflow.create_run()
    stream = run.stream("hello")

    async def collect() -> list[WorkflowEventType]:
        return [event.type async for event in stream]

    consumer = asyncio.create_task(collect())
    suspended = await stream.result()
    await asyncio.sleep(0)

    assert suspended.status is RunStatus.SUSPENDED
    assert not consumer.done()

    result = await workflow.resume_with_human_input(run.run_id, "approve", {"approved": True})
    seen = await asyncio.wait_for(consumer, timeout=1)

    assert result.result == "published"
    assert WorkflowEventType.WORKFLOW_SUSPENDED in seen
    assert WorkflowEventType.STEP_HUMAN_COMPLETED in seen
    assert seen[-1] is WorkflowEventType.WORKFLOW_SUCCESS


@pytest.mark.asyncio
async def test_cancelling_a_suspended_streamed_run_ends_the_stream(
    settings: WorkflowSettings,
) -> None:
    run = _approval_workflow(settings).create_run()
    stream = run.stream("hello")
    await stream.result()

    run.cancel("nobody answered")
    seen = [event.type async for event in stream]

    assert seen[-1] is WorkflowEventType.WORKFLOW_CANCELLED
