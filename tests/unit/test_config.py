"""Unit tests for configuration."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from pydantic import ValidationError

from stepflow.config import WorkflowSettings, get_settings


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in (
        "STEPFLOW_LOG_LEVEL",
        "STEPFLOW_RUN_ID_PREFIX",
        "STEPFLOW_DEFAULT_CONCURRENCY",
        "STEPFLOW_MAX_STEP_EXECUTIONS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_settings_defaults(clean_env: Path) -> None:
    """Test default values with no environment and no .env file."""
    settings = WorkflowSettings()

    assert settings.log_level == "INFO"
    assert settings.run_id_prefix == "run_"
    assert settings.default_concurrency == 1
    assert settings.max_step_executions == 10_000


def test_settings_load_from_environment(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STEPFLOW_DEFAULT_CONCURRENCY", "4")
    monkeypatch.setenv("STEPFLOW_RUN_ID_PREFIX", "job-")

    settings = WorkflowSettings()

    assert settings.default_concurrency == 4
    assert settings.run_id_prefix == "job-"


def test_settings_load_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "STEPFLOW_LOG_LEVEL=DEBUG",
                "STEPFLOW_MAX_STEP_EXECUTIONS=50",
                "UNRELATED_SETTING=ignored",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = WorkflowSettings()

    assert settings.log_level == "DEBUG"
    assert settings.max_step_executions == 50


def test_settings_reject_non_positive_limits(clean_env: Path) -> None:
    with pytest.raises(ValidationError):
        WorkflowSettings(default_concurrency=0)
    with pytest.raises(ValidationError):
        WorkflowSettings(max_step_executions=0)


def test_get_settings_is_cached(clean_env: Path) -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_setup_logging_installs_json_handler(
    clean_env: Path, restore_root_logger: None, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = WorkflowSettings(log_level="debug")
    settings.setup_logging()

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1

    stream = io.StringIO()
    root.handlers[0].setStream(stream)  # type: ignore[attr-defined]
    logging.getLogger("stepflow.test").info("hello")
    assert json.loads(stream.getvalue())["message"] == "hello"
