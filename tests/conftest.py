"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from stepflow.config import WorkflowSettings
from stepflow.types import RunContext, WorkflowEvent
from stepflow.utils.runtime import CancellationController


@pytest.fixture
def settings() -> WorkflowSettings:
    """Provide settings that ignore the environment and any `.env` file."""
    return WorkflowSettings(
        _env_file=None,
        log_level="DEBUG",
        run_id_prefix="test_",
        default_concurrency=1,
        max_step_executions=100,
    )


@pytest.fixture
def controller() -> CancellationController:
    return CancellationController()


@pytest.fixture
def make_context(controller: CancellationController) -> Callable[..., RunContext]:
    """Build a standalone step context bound to the `controller` fixture's signal."""

    def _make(**overrides: Any) -> RunContext:
        kwargs: dict[str, Any] = {
            "workflow_id": "workflow",
            "run_id": "run",
            "signal": controller.signal,
        }
        kwargs.update(overrides)
        return RunContext(**kwargs)

    return _make


@pytest.fixture
def events() -> list[WorkflowEvent]:
    return []


@pytest.fixture
def recorder(events: list[WorkflowEvent]) -> Callable[[WorkflowEvent], None]:
    """A watcher that appends every event to the `events` fixture."""
    return events.append
