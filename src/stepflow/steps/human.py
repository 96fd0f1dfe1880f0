"""Human-in-the-loop step.

Executing a ``HumanStep`` never produces an output directly: it builds a form
and a payload for the person answering, then parks the run. The answer comes
back through ``resume_with_human_input`` and is validated by ``parse_resume``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, Field

from stepflow.types import RunContext, StepHistoryEntry
from stepflow.utils.validation import Schema, as_schema

from .step import Step, maybe_await


class TextField(BaseModel):
    id: str
    label: str
    type: Literal["text"] = "text"
    required: bool = False
    placeholder: str | None = None


class SelectField(BaseModel):
    id: str
    label: str
    options: list[str] = Field(min_length=1)
    type: Literal["select"] = "select"
    required: bool = False


HumanFormField = Annotated[TextField | SelectField, Field(discriminator="type")]


class HumanForm(BaseModel):
    title: str | None = None
    description: str | None = None
    fields: list[HumanFormField] = Field(default_factory=list)


FormBuilder = Callable[[RunContext], HumanForm]
PayloadBuilder = Callable[[Any, Mapping[str, StepHistoryEntry], RunContext], Any]


def _default_payload(
    input: Any,  # noqa: A002
    _history: Mapping[str, StepHistoryEntry],
    _context: RunContext,
) -> Any:
    return input


class HumanStep(Step[Any, Any]):
    kind: ClassVar[str] = "human"

    def __init__(
        self,
        *,
        id: str,  # noqa: A002
        form: FormBuilder | HumanForm,
        payload: PayloadBuilder | None = None,
        response_schema: Any = None,
        description: str | None = None,
        input_schema: Any = None,
        output_schema: Any = None,
    ) -> None:
        super().__init__(
            id=id,
            handler=self._request,
            description=description,
            input_schema=input_schema,
            output_schema=output_schema,
        )
        self.form = form
        self.payload = payload or _default_payload
        self._response_schema_source = response_schema
        self.response_schema: Schema | None = as_schema(response_schema)

    def build_form(self, context: RunContext) -> HumanForm:
        if isinstance(self.form, HumanForm):
            return self.form
        return self.form(context)

    async def _request(self, input: Any, context: RunContext) -> Any:  # noqa: A002
        form = self.build_form(context)
        payload = await maybe_await(self.payload(input, context.history, context))
        context.suspend(payload=payload, form=form)

    def parse_resume(self, data: Any) -> Any:
        if self.response_schema is not None:
            data = self.response_schema.validate(data, f"human step {self.id} response")
        return self.validate_output(data)

    def _clone_kwargs(self) -> dict[str, Any]:
        kwargs = super()._clone_kwargs()
        del kwargs["handler"]
        kwargs.update(
            form=self.form,
            payload=self.payload,
            response_schema=self._response_schema_source,
        )
        return kwargs


def text(*, id: str, label: str, required: bool = False, placeholder: str | None = None) -> TextField:  # noqa: A002
    return TextField(id=id, label=label, required=required, placeholder=placeholder)


def select(*, id: str, label: str, options: list[str], required: bool = False) -> SelectField:  # noqa: A002
    return SelectField(id=id, label=label, options=options, required=required)
