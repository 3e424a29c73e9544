"""Bound-plan validators.

Run at POST_ATTACH. Validators receive an ExecutionPlan that has
just been bound to its backend, and compare what the runtime will
execute against what the graph declared.
"""

from ..plan import ExecutionPlan
from .core import Phase, Severity, ValidationResult, register_validator


@register_validator("runtime_slots", Phase.POST_ATTACH)
def validate_runtime_slots(plan: ExecutionPlan) -> list[ValidationResult]:
    """The runtime's first input/output must be the graph's first input/output."""
    NAME = "runtime_slots"
    results = []

    for role, declared, bound in (
        ("input", plan.graph.input_tensor, plan.input_tensor),
        ("output", plan.graph.output_tensor, plan.output_tensor),
    ):
        if declared is None or bound is None:
            continue
        if declared.name != bound.name:
            results.append(ValidationResult(NAME, Severity.ERROR,
                f"Runtime {role} '{bound.name}' is not graph {role} "
                f"'{declared.name}'", subject=bound.name))
        elif declared.elem_type != bound.elem_type:
            results.append(ValidationResult(NAME, Severity.ERROR,
                f"Runtime {role} '{bound.name}' is {bound.type_name}, "
                f"graph declares {declared.type_name}", subject=bound.name))
        elif declared.rank and declared.rank != bound.rank:
            results.append(ValidationResult(NAME, Severity.ERROR,
                f"Runtime {role} '{bound.name}' has rank {bound.rank}, "
                f"graph declares {declared.rank}", subject=bound.name))

    return results


@register_validator("providers", Phase.POST_ATTACH)
def report_providers(plan: ExecutionPlan) -> list[ValidationResult]:
    """Report which execution providers the plan ended up on."""
    return [ValidationResult("providers", Severity.INFO,
        "Bound to " + (", ".join(plan.providers) or "no providers"))]
