"""Step kinds.

Every kind is a ``Step``: the run never special-cases composites, it only
calls ``execute``, ``resolve_branch`` and ``parse_resume``.
"""

from stepflow.steps.condition import ConditionStep, create_condition_step
from stepflow.steps.for_each import ForEachStep, create_for_each_step
from stepflow.steps.human import HumanForm, HumanStep, SelectField, TextField
from stepflow.steps.parallel import ParallelStep
from stepflow.steps.step import Step, create_step, maybe_await
from stepflow.steps.while_loop import WhileStep, create_while_step

__all__ = [
    "ConditionStep",
    "ForEachStep",
    "HumanForm",
    "HumanStep",
    "ParallelStep",
    "SelectField",
    "Step",
    "TextField",
    "WhileStep",
    "create_condition_step",
    "create_for_each_step",
    "create_step",
    "create_while_step",
    "maybe_await",
]
