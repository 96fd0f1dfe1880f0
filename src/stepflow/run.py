"""Per-execution state machine.

A ``WorkflowRun`` owns the store, the metadata and the cancellation scope of
one execution. It drives the committed step sequence, follows branch
redirections, parks on suspension and re-enters on resume.

Statuses: pending -> running -> {completed, failed, aborted, suspended};
suspended -> running on resume.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, NoReturn, TypeVar

from stepflow.config import WorkflowSettings
from stepflow.errors import (
    AbortError,
    BranchResolutionError,
    ExecutionError,
    ResumeError,
    SchemaError,
    WorkflowError,
)
from stepflow.state_machine import RunSnapshot, RunStatus, transition
from stepflow.steps.human import HumanForm
from stepflow.steps.step import Step
from stepflow.types import (
    END,
    PendingHumanTask,
    RunContext,
    RunResult,
    StepHistoryEntry,
    StepSnapshot,
    StepSuspended,
    StepTransition,
    WorkflowEvent,
    WorkflowEventType,
)
from stepflow.utils.runtime import (
    CancellationController,
    CancellationSignal,
    MergedSignal,
    clone_metadata,
    merge_signals,
)

if TYPE_CHECKING:
    from stepflow.workflow import Workflow

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")

WorkflowWatcher = Callable[[WorkflowEvent], None]

_STREAM_END = object()


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class _PendingStep:
    step: Step[Any, Any]
    context: RunContext
    input: Any
    payload: Any
    form: HumanForm | None
    requested_at: datetime
    snapshot_index: int


class RunStream(Generic[OutputT]):
    """Events of a run as an async iterator, plus the eventual result.

    Iteration ends once the run completes, fails or aborts. A suspended run
    keeps the stream open until a resume drives it to a terminal status;
    ``result()`` returns the outcome of the initial ``start``.
    """

    def __init__(self, queue: asyncio.Queue[Any], task: asyncio.Task[RunResult[OutputT]]) -> None:
        self._queue = queue
        self._task = task

    def __aiter__(self) -> AsyncIterator[WorkflowEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[WorkflowEvent]:
        while True:
            event = await self._queue.get()
            if event is _STREAM_END:
                return
            yield event

    async def result(self) -> RunResult[OutputT]:
        return await self._task


class WorkflowRun(Generic[InputT, OutputT]):
    def __init__(
        self,
        *,
        workflow: Workflow[InputT, OutputT],
        run_id: str,
        settings: WorkflowSettings,
    ) -> None:
        self.workflow_id = workflow.id
        self.run_id = run_id
        self._workflow = workflow
        self._settings = settings
        self._controller = CancellationController()
        self._snapshot = RunSnapshot(status=RunStatus.PENDING)
        self._watchers: list[WorkflowWatcher] = []
        self._store: dict[str, Any] = {}
        self._history: dict[str, StepHistoryEntry] = {}
        self._step_snapshots: dict[str, list[StepSnapshot]] = {}
        self._occurrences: Counter[str] = Counter()
        self._executions = 0
        self._signal: MergedSignal | None = None
        self._context: RunContext | None = None
        self._current: Any = None
        self._pending: _PendingStep | None = None
        self._started_at: datetime | None = None
        self._result: RunResult[OutputT] | None = None
        self._stream_queue: asyncio.Queue[Any] | None = None

    def __repr__(self) -> str:
        return f"WorkflowRun(workflow_id={self.workflow_id!r}, run_id={self.run_id!r}, status={self.status.value})"

    @property
    def status(self) -> RunStatus:
        return self._snapshot.status

    @property
    def snapshot(self) -> RunSnapshot:
        return self._snapshot

    @property
    def result(self) -> RunResult[OutputT] | None:
        """The last result produced by ``start`` / ``resume``, including aborts."""

        return self._result

    @property
    def store(self) -> dict[str, Any]:
        return self._store

    @property
    def metadata(self) -> Any:
        return self._context.metadata_value if self._context is not None else None

    @property
    def pending_human(self) -> PendingHumanTask | None:
        return self._result.pending_human if self._pending is not None and self._result else None

    @property
    def _log_extra(self) -> dict[str, Any]:
        return {"workflow_id": self.workflow_id, "run_id": self.run_id}

    def watch(self, watcher: WorkflowWatcher) -> Callable[[], None]:
        """Register an event watcher; returns a callable that unregisters it."""

        self._watchers.append(watcher)

        def unsubscribe() -> None:
            if watcher in self._watchers:
                self._watchers.remove(watcher)

        return unsubscribe

    def cancel(self, reason: object = None) -> None:
        """Request cooperative cancellation.

        A running run observes it at its next checkpoint. A suspended run is
        aborted immediately.
        """

        self._controller.abort(reason)
        if self.status is RunStatus.SUSPENDED:
            error = self._signal.reason if self._signal and self._signal.reason else AbortError()
            self._finish_abort(error)

    async def start(
        self,
        input_data: Any,
        *,
        metadata: Any = None,
        signal: CancellationSignal | None = None,
    ) -> RunResult[OutputT]:
        """Execute the workflow.

        Returns the ``RunResult`` for completed, failed and suspended runs.
        Raises ``AbortError`` (the signal's reason) when cancellation is
        observed; ``run.result`` then holds the aborted result.
        """

        if self.status is not RunStatus.PENDING or self._signal is not None:
            raise ExecutionError("Workflow run can only be executed once")

        sources = [self._controller.signal]
        if signal is not None:
            sources.append(signal)
        self._signal = merge_signals(sources)
        self._started_at = _now()
        self._context = RunContext(
            workflow_id=self.workflow_id,
            run_id=self.run_id,
            store=self._store,
            signal=self._signal,
            metadata=clone_metadata(
                metadata if metadata is not None else self._workflow.initial_metadata
            ),
            history=self._history,
            sink=self._on_step_event,
        )

        if self._signal.aborted:
            self._abort()

        self._transition(RunStatus.RUNNING, step_id=self._workflow.entry_id)
        logger.info("Workflow run started", extra=self._log_extra)
        self._emit(WorkflowEventType.WORKFLOW_START)

        try:
            validated = self._workflow.validate_input(input_data)
        except SchemaError as exc:
            return self._fail(exc)

        self._context.initial_input = validated
        self._current = validated
        return await self._drive(self._workflow.entry_id)

    def stream(
        self,
        input_data: Any,
        *,
        metadata: Any = None,
        signal: CancellationSignal | None = None,
    ) -> RunStream[OutputT]:
        """Start the run in a background task and expose its events as they happen.

        A run that suspends keeps its stream open; events of the resumed
        execution are streamed too, and iteration ends once the run reaches a
        terminal status.
        """

        if self.status is not RunStatus.PENDING or self._signal is not None:
            raise ExecutionError("Workflow run can only be executed once")

        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._stream_queue = queue
        task = asyncio.get_running_loop().create_task(
            self.start(input_data, metadata=metadata, signal=signal)
        )

        def on_done(_task: asyncio.Task[RunResult[OutputT]]) -> None:
            if self.status is not RunStatus.SUSPENDED:
                self._end_stream()

        task.add_done_callback(on_done)
        return RunStream(queue, task)

    async def resume_with_human_input(
        self, *, step_id: str, data: Any, run_id: str | None = None
    ) -> RunResult[OutputT]:
        """Re-enter a suspended run, substituting ``data`` for the pending step's output.

        Invalid ``data`` raises ``SchemaError`` and leaves the run suspended.
        """

        if self.status is RunStatus.PENDING:
            raise ResumeError("Workflow run has not been started")
        pending = self._pending
        if pending is None or self.status is not RunStatus.SUSPENDED:
            raise ResumeError("No human interaction is pending for this run")
        if run_id is not None and run_id != self.run_id:
            raise ResumeError(f"Cannot resume run {run_id} with id {self.run_id}")
        if pending.step.id != step_id:
            raise ResumeError(
                f"Pending human interaction is for step {pending.step.id}, received {step_id}"
            )

        output = pending.step.parse_resume(data)

        assert self._signal is not None
        if self._signal.aborted:
            self._abort()

        self._pending = None
        self._workflow._unpark(self)
        self._transition(RunStatus.RUNNING, step_id=step_id)
        logger.info("Workflow run resumed", extra={**self._log_extra, "step_id": step_id})

        try:
            next_step_id = await self._next_step(pending.step, pending.input, output, pending.context)
        except WorkflowError as exc:
            self._step_snapshots[step_id][pending.snapshot_index] = replace(
                self._step_snapshots[step_id][pending.snapshot_index],
                status="failed",
                error=exc,
                finished_at=_now(),
            )
            self._emit(WorkflowEventType.STEP_ERROR, step_id=step_id, data=exc)
            return self._fail(exc)

        self._step_snapshots[step_id][pending.snapshot_index] = replace(
            self._step_snapshots[step_id][pending.snapshot_index],
            status="success",
            output=output,
            finished_at=_now(),
            next_step_id=next_step_id,
        )
        self._history[step_id] = StepHistoryEntry(input=pending.input, output=output)
        self._emit(
            WorkflowEventType.STEP_HUMAN_COMPLETED,
            step_id=step_id,
            data={"response": output, "next_step_id": next_step_id},
        )
        self._emit(WorkflowEventType.STEP_SUCCESS, step_id=step_id, data=output)

        self._current = output
        return await self._drive(next_step_id)

    async def _drive(self, step_id: str | None) -> RunResult[OutputT]:
        assert self._signal is not None and self._context is not None

        while step_id is not None:
            if self._signal.aborted:
                self._abort()

            step = self._workflow.get_step(step_id)
            if step is None:
                return self._fail(ExecutionError(f"Unknown step {step_id}", step_id=step_id))

            self._executions += 1
            if self._executions > self._settings.max_step_executions:
                return self._fail(
                    ExecutionError(
                        f"Workflow {self.workflow_id} exceeded "
                        f"{self._settings.max_step_executions} step executions",
                        step_id=step_id,
                    )
                )

            self._snapshot = replace(self._snapshot, step_id=step_id)
            context = self._context.child(step_id)
            started = _now()
            logger.debug("Step started", extra={**self._log_extra, "step_id": step_id})
            self._emit(WorkflowEventType.STEP_START, step_id=step_id)

            try:
                outcome = await step.execute(self._current, context)
            except StepSuspended as request:
                return self._suspend(step, context, request, started)
            except AbortError as exc:
                self._abort(exc)
            except WorkflowError as exc:
                self._record(step_id, "failed", started, input=self._current, error=exc)
                self._emit(WorkflowEventType.STEP_ERROR, step_id=step_id, data=exc)
                return self._fail(exc)
            except Exception as exc:
                # Steps wrap handler errors; anything else came from a custom step or schema.
                error = ExecutionError(f"Step {step_id} failed: {exc}", step_id=step_id)
                error.__cause__ = exc
                self._record(step_id, "failed", started, input=self._current, error=error)
                self._emit(WorkflowEventType.STEP_ERROR, step_id=step_id, data=error)
                return self._fail(error)

            try:
                next_step_id = await self._next_step(step, outcome.input, outcome.output, context)
            except WorkflowError as exc:
                self._record(step_id, "failed", started, input=outcome.input, error=exc)
                self._emit(WorkflowEventType.STEP_ERROR, step_id=step_id, data=exc)
                return self._fail(exc)

            self._record(
                step_id,
                "success",
                started,
                input=outcome.input,
                output=outcome.output,
                next_step_id=next_step_id,
            )
            self._history[step_id] = StepHistoryEntry(input=outcome.input, output=outcome.output)
            self._emit(WorkflowEventType.STEP_SUCCESS, step_id=step_id, data=outcome.output)

            self._current = outcome.output
            step_id = next_step_id

        if self._signal.aborted:
            self._abort()

        try:
            output = self._workflow.validate_output(self._current)
        except WorkflowError as exc:
            return self._fail(exc)
        return self._complete(output)

    async def _next_step(
        self, step: Step[Any, Any], input: Any, output: Any, context: RunContext  # noqa: A002
    ) -> str | None:
        try:
            target = await step.resolve_branch(StepTransition(input=input, output=output, context=context))
        except WorkflowError:
            raise
        except Exception as exc:
            raise ExecutionError(
                f"Step {step.id} branch resolver failed: {exc}", step_id=step.id
            ) from exc

        if target is None:
            return self._workflow.next_step_id(step.id)
        if target is END:
            self._emit(
                WorkflowEventType.STEP_BRANCH,
                step_id=step.id,
                data={"condition_step_id": step.id, "next_step_id": None},
            )
            return None
        if not self._workflow.has_step(target):
            raise BranchResolutionError(step.id, target)

        self._emit(
            WorkflowEventType.STEP_BRANCH,
            step_id=step.id,
            data={"condition_step_id": step.id, "next_step_id": target},
        )
        return target

    def _record(
        self,
        step_id: str,
        status: Any,
        started: datetime,
        *,
        input: Any,  # noqa: A002
        output: Any = None,
        error: BaseException | None = None,
        next_step_id: str | None = None,
    ) -> int:
        self._occurrences[step_id] += 1
        snapshots = self._step_snapshots.setdefault(step_id, [])
        snapshots.append(
            StepSnapshot(
                status=status,
                input=input,
                output=output,
                error=error,
                started_at=started,
                finished_at=_now(),
                occurrence=self._occurrences[step_id],
                next_step_id=next_step_id,
            )
        )
        return len(snapshots) - 1

    def _suspend(
        self,
        step: Step[Any, Any],
        context: RunContext,
        request: StepSuspended,
        started: datetime,
    ) -> RunResult[OutputT]:
        step_input = request.input
        index = self._record(step.id, "suspended", started, input=step_input)
        self._pending = _PendingStep(
            step=step,
            context=context,
            input=step_input,
            payload=request.payload,
            form=request.form,
            requested_at=started,
            snapshot_index=index,
        )
        self._transition(RunStatus.SUSPENDED, step_id=step.id)

        task = PendingHumanTask(
            run_id=self.run_id,
            step_id=step.id,
            workflow_id=self.workflow_id,
            payload=request.payload,
            form=request.form,
            requested_at=started,
        )
        logger.info("Workflow run suspended", extra={**self._log_extra, "step_id": step.id})
        self._emit(WorkflowEventType.STEP_HUMAN_REQUESTED, step_id=step.id, data=task)
        self._emit(WorkflowEventType.WORKFLOW_SUSPENDED, step_id=step.id)

        self._workflow._park(self)
        self._result = self._build_result(RunStatus.SUSPENDED, pending=task)
        return self._result

    def _abort(self, error: AbortError | None = None) -> NoReturn:
        reason = self._signal.reason if self._signal is not None else None
        error = reason or error or AbortError()
        self._finish_abort(error)
        raise error

    def _finish_abort(self, error: AbortError) -> None:
        self._transition(RunStatus.ABORTED)
        logger.warning("Workflow run aborted", extra={**self._log_extra, "reason": str(error)})
        self._emit(WorkflowEventType.WORKFLOW_CANCELLED, data=error)
        self._pending = None
        self._result = self._build_result(RunStatus.ABORTED, error=error)
        self._close()

    def _fail(self, error: WorkflowError) -> RunResult[OutputT]:
        self._transition(RunStatus.FAILED)
        logger.warning(
            "Workflow run failed",
            extra={
                **self._log_extra,
                "step_id": getattr(error, "step_id", None),
                "error": type(error).__name__,
            },
        )
        self._emit(WorkflowEventType.WORKFLOW_ERROR, data=error)
        self._result = self._build_result(RunStatus.FAILED, error=error)
        self._close()
        return self._result

    def _complete(self, output: OutputT) -> RunResult[OutputT]:
        self._transition(RunStatus.COMPLETED)
        logger.info("Workflow run completed", extra=self._log_extra)
        self._emit(WorkflowEventType.WORKFLOW_SUCCESS, data=output)
        self._result = self._build_result(RunStatus.COMPLETED, result=output)
        self._close()
        return self._result

    def _close(self) -> None:
        if self._signal is not None:
            self._signal.release()
        self._workflow._unpark(self)
        self._end_stream()

    def _end_stream(self) -> None:
        queue, self._stream_queue = self._stream_queue, None
        if queue is not None:
            queue.put_nowait(_STREAM_END)

    def _transition(self, to: RunStatus, *, step_id: str | None = None) -> None:
        self._snapshot = transition(current=self._snapshot, to=to, step_id=step_id)

    def _build_result(
        self,
        status: RunStatus,
        *,
        result: OutputT | None = None,
        error: BaseException | None = None,
        pending: PendingHumanTask | None = None,
    ) -> RunResult[OutputT]:
        return RunResult(
            status=status,
            metadata=self.metadata,
            result=result,
            error=error,
            steps={step_id: list(items) for step_id, items in self._step_snapshots.items()},
            started_at=self._started_at,
            finished_at=_now(),
            pending_human=pending,
        )

    def _on_step_event(self, step_id: str, name: str, data: Any) -> None:
        self._emit(
            WorkflowEventType.STEP_EVENT,
            step_id=step_id,
            data={"name": name, "payload": data},
        )

    def _emit(
        self,
        type: WorkflowEventType,  # noqa: A002
        *,
        step_id: str | None = None,
        data: Any = None,
    ) -> None:
        event = WorkflowEvent(
            type=type,
            workflow_id=self.workflow_id,
            run_id=self.run_id,
            step_id=step_id,
            data=data,
            metadata=self.metadata,
        )
        for watcher in list(self._watchers):
            try:
                watcher(event)
            except Exception:
                logger.exception(
                    "Workflow watcher failed",
                    extra={**self._log_extra, "step_id": step_id, "event": type.value},
                )
        if self._stream_queue is not None:
            self._stream_queue.put_nowait(event)
