"""Run lifecycle statuses and the transitions allowed between them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from stepflow.errors import IllegalTransitionError


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"
    SUSPENDED = "suspended"


ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.ABORTED},
    RunStatus.RUNNING: {
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.ABORTED,
        RunStatus.SUSPENDED,
    },
    RunStatus.SUSPENDED: {RunStatus.RUNNING, RunStatus.ABORTED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
    RunStatus.ABORTED: set(),
}

TERMINAL_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.ABORTED}
)


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """Where a run is in its lifecycle.

    ``step_id`` is the step about to run (or parked on, when suspended).
    """

    status: RunStatus
    step_id: str | None = None
    changed_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"status": self.status.value}
        if self.step_id is not None:
            out["step_id"] = self.step_id
        if self.changed_at is not None:
            out["changed_at"] = self.changed_at.isoformat()
        return out


def transition(
    *, current: RunSnapshot, to: RunStatus, step_id: str | None = None
) -> RunSnapshot:
    allowed = ALLOWED_TRANSITIONS.get(current.status, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal transition: {current.status.value} -> {to.value}"
        )
    return RunSnapshot(
        status=to,
        step_id=step_id if step_id is not None else current.step_id,
        changed_at=datetime.now(UTC),
    )
