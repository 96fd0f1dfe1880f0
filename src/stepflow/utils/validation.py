"""Schema adaptation.

The engine does not depend on any particular validation library. Schema
objects are adapted once, when a step or workflow is configured, into one of
two explicit implementations:

* ``ResultSchema`` for validators with a non-throwing ``safe_parse`` that
  returns a result object (``success`` / ``data`` / ``error``);
* ``RaisingSchema`` for validators that raise on invalid data: pydantic models
  and ``TypeAdapter``s, plain type annotations, or anything with ``parse``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, TypeAdapter

from stepflow.errors import SchemaError


@runtime_checkable
class Schema(Protocol):
    """Uniform validate-or-fail contract used by steps and workflows."""

    def validate(self, value: Any, context: str) -> Any: ...


class ResultSchema:
    """Adapter for validators that report failures through a result object."""

    def __init__(self, validator: Any) -> None:
        self._safe_parse: Callable[[Any], Any] = validator.safe_parse
        self.validator = validator

    def validate(self, value: Any, context: str) -> Any:
        try:
            result = self._safe_parse(value)
        except Exception as exc:
            raise SchemaError(
                f"Schema validation failed for {context}: {exc}", source="validator"
            ) from exc
        if _result_field(result, "success"):
            return _result_field(result, "data")

        error = _result_field(result, "error")
        exc = SchemaError(f"Schema validation failed for {context}", source="mismatch")
        if isinstance(error, BaseException):
            raise exc from error
        raise exc from ValueError(str(error))

    def __repr__(self) -> str:
        return f"ResultSchema({self.validator!r})"


class RaisingSchema:
    """Adapter for validators that raise on invalid data."""

    def __init__(self, parse: Callable[[Any], Any], *, name: str = "") -> None:
        self._parse = parse
        self.name = name or getattr(parse, "__qualname__", repr(parse))

    def validate(self, value: Any, context: str) -> Any:
        try:
            return self._parse(value)
        except Exception as exc:
            raise SchemaError(
                f"Schema validation failed for {context}: {exc}", source="validator"
            ) from exc

    def __repr__(self) -> str:
        return f"RaisingSchema({self.name})"


def _result_field(result: Any, name: str) -> Any:
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


def _is_type_annotation(obj: Any) -> bool:
    # `int`, `list[int]`, `int | None`, `Literal[...]`, `Annotated[...]`, ...
    return isinstance(obj, type) or hasattr(obj, "__origin__") or type(obj).__module__ in {
        "types",
        "typing",
    }


def as_schema(obj: Any) -> Schema | None:
    """Select the schema implementation for ``obj``.

    Returns ``None`` for ``None`` (no validation). Raises ``SchemaError`` when
    ``obj`` exposes no supported validation capability.
    """

    if obj is None:
        return None
    if isinstance(obj, (ResultSchema, RaisingSchema)):
        return obj
    if isinstance(obj, type) and issubclass(obj, BaseModel):
        return RaisingSchema(obj.model_validate, name=obj.__name__)
    if isinstance(obj, TypeAdapter):
        return RaisingSchema(obj.validate_python, name=repr(obj))
    if callable(getattr(obj, "safe_parse", None)):
        return ResultSchema(obj)
    if callable(getattr(obj, "parse", None)):
        return RaisingSchema(obj.parse, name=type(obj).__name__)
    if _is_type_annotation(obj):
        try:
            adapter = TypeAdapter(obj)
        except Exception as exc:
            raise SchemaError(
                f"Type {obj!r} cannot be used as a schema", source="unsupported"
            ) from exc
        return RaisingSchema(adapter.validate_python, name=repr(obj))

    error = SchemaError(
        f"Schema {obj!r} must expose safe_parse or parse", source="unsupported"
    )
    raise error from TypeError(type(obj).__name__)


def parse_with_schema(schema: Any, value: Any, context: str) -> Any:
    """Validate ``value`` against ``schema``; ``None`` accepts anything."""

    adapted = as_schema(schema)
    if adapted is None:
        return value
    return adapted.validate(value, context)
