"""Shared value types: run context, results, snapshots and events."""

from __future__ import annotations

from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, Literal, NoReturn, TypeVar

from stepflow.state_machine import RunStatus
from stepflow.utils.runtime import CancellationSignal

if TYPE_CHECKING:
    from stepflow.steps.human import HumanForm

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class _End:
    """Sentinel returned by a branch resolver to finish the run immediately."""

    _instance: _End | None = None

    def __new__(cls) -> _End:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END"


END = _End()


class WorkflowEventType(str, Enum):
    WORKFLOW_START = "workflow:start"
    WORKFLOW_SUCCESS = "workflow:success"
    WORKFLOW_ERROR = "workflow:error"
    WORKFLOW_CANCELLED = "workflow:cancelled"
    WORKFLOW_SUSPENDED = "workflow:suspended"
    STEP_START = "step:start"
    STEP_SUCCESS = "step:success"
    STEP_ERROR = "step:error"
    STEP_EVENT = "step:event"
    STEP_BRANCH = "step:branch"
    STEP_HUMAN_REQUESTED = "step:human:requested"
    STEP_HUMAN_COMPLETED = "step:human:completed"


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    """A progress/telemetry event emitted while a run executes."""

    type: WorkflowEventType
    workflow_id: str
    run_id: str
    metadata: Any
    step_id: str | None = None
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "type": self.type.value,
            "workflow_id": self.workflow_id,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.step_id is not None:
            out["step_id"] = self.step_id
        return out


EventSink = Callable[[str, str, Any], None]
"""``(step_id, name, data)`` callback receiving custom step events."""


class StepSuspended(Exception):
    """Raised by a handler to park the run until external input arrives.

    This is control flow, not a failure: the run turns it into the
    ``SUSPENDED`` status instead of ``FAILED``.
    """

    def __init__(
        self,
        step_id: str | None,
        *,
        payload: Any = None,
        form: HumanForm | None = None,
    ) -> None:
        super().__init__(f"Step {step_id} requested human input")
        self.step_id = step_id
        self.payload = payload
        self.form = form
        self.input: Any = None


@dataclass(frozen=True, slots=True)
class StepHistoryEntry:
    input: Any
    output: Any = None


@dataclass(slots=True)
class _MetadataCell:
    value: Any


class RunContext:
    """Per-step view of a run.

    Contexts handed to the steps of one run share the store, metadata,
    history and signal; only ``step_id`` differs. Metadata is replaced, never
    mutated: ``update_metadata`` stores whatever the updater returns.
    """

    def __init__(
        self,
        *,
        workflow_id: str = "workflow",
        run_id: str = "run",
        initial_input: Any = None,
        store: MutableMapping[str, Any] | None = None,
        signal: CancellationSignal | None = None,
        metadata: Any = None,
        step_id: str | None = None,
        history: Mapping[str, StepHistoryEntry] | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.run_id = run_id
        self.initial_input = initial_input
        self.store: MutableMapping[str, Any] = store if store is not None else {}
        self.signal = signal if signal is not None else CancellationSignal()
        self.step_id = step_id
        self._metadata = _MetadataCell(metadata if metadata is not None else {})
        self._history: Mapping[str, StepHistoryEntry] = history if history is not None else {}
        self._sink = sink

    def child(self, step_id: str) -> RunContext:
        """Return a context for ``step_id`` sharing all run state with this one."""

        ctx = RunContext.__new__(RunContext)
        ctx.workflow_id = self.workflow_id
        ctx.run_id = self.run_id
        ctx.initial_input = self.initial_input
        ctx.store = self.store
        ctx.signal = self.signal
        ctx.step_id = step_id
        ctx._metadata = self._metadata
        ctx._history = self._history
        ctx._sink = self._sink
        return ctx

    @property
    def history(self) -> Mapping[str, StepHistoryEntry]:
        return MappingProxyType(dict(self._history))

    def get_metadata(self) -> Any:
        value = self._metadata.value
        if isinstance(value, dict):
            return MappingProxyType(value)
        return value

    def update_metadata(self, updater: Callable[[Any], Any]) -> Any:
        """Replace the run metadata with ``updater(current)``; returns the new value."""

        updated = updater(self.get_metadata())
        if updated is None:
            raise TypeError("Metadata updater must return the new metadata")
        if isinstance(updated, MappingProxyType):
            updated = dict(updated)
        self._metadata.value = updated
        return updated

    def emit(self, name: str, data: Any = None) -> None:
        if self._sink is not None:
            self._sink(self.step_id or "", name, data)

    def suspend(self, *, payload: Any = None, form: HumanForm | None = None) -> NoReturn:
        raise StepSuspended(self.step_id, payload=payload, form=form)

    @property
    def metadata_value(self) -> Any:
        """The raw metadata object (not a read-only view)."""

        return self._metadata.value


@dataclass(frozen=True, slots=True)
class StepResult(Generic[InputT, OutputT]):
    input: InputT
    output: OutputT


@dataclass(frozen=True, slots=True)
class StepTransition:
    """Arguments handed to branch resolvers."""

    input: Any
    output: Any
    context: RunContext


@dataclass(frozen=True, slots=True)
class WhileLoopState(Generic[InputT, OutputT]):
    """Input threaded through a while-step's condition and body steps."""

    iteration: int
    initial_input: InputT
    last_output: OutputT | None = None


StepSnapshotStatus = Literal["success", "failed", "suspended"]


@dataclass(slots=True)
class StepSnapshot:
    status: StepSnapshotStatus
    input: Any
    started_at: datetime
    finished_at: datetime
    occurrence: int
    output: Any = None
    error: BaseException | None = None
    next_step_id: str | None = None


@dataclass(frozen=True, slots=True)
class PendingHumanTask:
    run_id: str
    step_id: str
    workflow_id: str
    payload: Any
    requested_at: datetime
    form: HumanForm | None = None


@dataclass(frozen=True, slots=True)
class RunResult(Generic[OutputT]):
    status: RunStatus
    metadata: Any
    result: OutputT | None = None
    error: BaseException | None = None
    steps: dict[str, list[StepSnapshot]] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    pending_human: PendingHumanTask | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED
