"""Validation and runtime helpers shared by steps and runs."""

from stepflow.utils.runtime import (
    CancellationController,
    CancellationSignal,
    MergedSignal,
    clone_metadata,
    create_run_id,
    gather_fail_fast,
    merge_signals,
)
from stepflow.utils.validation import (
    RaisingSchema,
    ResultSchema,
    Schema,
    as_schema,
    parse_with_schema,
)

__all__ = [
    "CancellationController",
    "CancellationSignal",
    "MergedSignal",
    "RaisingSchema",
    "ResultSchema",
    "Schema",
    "as_schema",
    "clone_metadata",
    "create_run_id",
    "gather_fail_fast",
    "merge_signals",
    "parse_with_schema",
]
