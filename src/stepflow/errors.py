"""Error taxonomy for the workflow engine.

Callers branch on the exception class, never on the message text. Every error
raised by the engine chains the original failure as ``__cause__``.
"""

from __future__ import annotations

from typing import Literal

SchemaErrorSource = Literal["mismatch", "validator", "unsupported"]


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class WorkflowDefinitionError(WorkflowError, ValueError):
    """A workflow could not be assembled (duplicate ids, unknown branch targets, ...)."""


class SchemaError(WorkflowError):
    """Input or output validation failed.

    ``source`` tells a structural mismatch reported by a result-style schema
    (``"mismatch"``) apart from an exception raised by a third-party validator
    (``"validator"``) and from a schema object with no usable capability
    (``"unsupported"``).
    """

    def __init__(self, message: str, *, source: SchemaErrorSource = "mismatch") -> None:
        super().__init__(message)
        self.source = source


class ExecutionError(WorkflowError):
    """A handler raised, or an engine invariant was violated. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        step_id: str | None = None,
        index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.index = index


class AbortError(WorkflowError):
    """Cooperative cancellation was observed."""

    def __init__(self, message: str = "Workflow run aborted") -> None:
        super().__init__(message)


class BranchResolutionError(WorkflowError):
    """A condition step resolved to a step id the workflow does not contain."""

    def __init__(self, step_id: str, target: object) -> None:
        super().__init__(f"Step {step_id} resolved branch to unknown step {target!r}")
        self.step_id = step_id
        self.target = target


class ResumeError(WorkflowError):
    """Resume was requested against a run or step that is not suspended there."""


class IllegalTransitionError(WorkflowError, ValueError):
    pass
