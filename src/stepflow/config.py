"""Engine configuration.

Configuration is loaded from:
- environment variables prefixed with ``STEPFLOW_``
- and a local `.env` file (if present)

Tests can bypass the environment entirely by passing values to the
constructor, e.g. ``WorkflowSettings(max_step_executions=5)``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Settings shared by every workflow and run."""

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    run_id_prefix: str = Field(
        default="run_",
        description="Prefix for generated run ids",
    )
    default_concurrency: int = Field(
        default=1,
        ge=1,
        description="Worker count used by for-each steps that do not set one",
    )
    max_step_executions: int = Field(
        default=10_000,
        gt=0,
        description=(
            "Upper bound on step executions within one run. Branch redirections "
            "can jump backwards, so this is the only guard against a run that never ends."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="STEPFLOW_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure structured logging at the configured level."""
        from stepflow.logging import configure_logging

        configure_logging(self.log_level)
        logging.getLogger("stepflow").debug("Logging configured", extra={"level": self.log_level})


@lru_cache(maxsize=1)
def get_settings() -> WorkflowSettings:
    """Return the process-wide settings, loaded once."""

    return WorkflowSettings()
