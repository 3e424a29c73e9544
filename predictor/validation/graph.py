"""Load-time validators.

Run at POST_LOAD against the parsed Graph. Problems that only bite on
predict() (rank, element types) are warnings here; the session raises
the typed error when it actually hits them.
"""

from ..ir import Graph
from .core import Phase, Severity, ValidationResult, register_validator


@register_validator("io_slots", Phase.POST_LOAD)
def validate_io_slots(graph: Graph) -> list[ValidationResult]:
    """The session feeds exactly one input and reads exactly one output."""
    NAME = "io_slots"
    results = []

    if not graph.inputs:
        results.append(ValidationResult(NAME, Severity.ERROR,
            "Graph declares no (non-initializer) inputs"))
    elif len(graph.inputs) > 1:
        results.append(ValidationResult(NAME, Severity.WARNING,
            f"Graph declares {len(graph.inputs)} inputs; only "
            f"'{graph.inputs[0]}' is fed", subject=graph.inputs[0]))

    if not graph.outputs:
        results.append(ValidationResult(NAME, Severity.ERROR,
            "Graph declares no outputs"))
    elif len(graph.outputs) > 1:
        results.append(ValidationResult(NAME, Severity.INFO,
            f"Graph declares {len(graph.outputs)} outputs; only "
            f"'{graph.outputs[0]}' is read", subject=graph.outputs[0]))

    return results


@register_validator("input_layout", Phase.POST_LOAD)
def validate_input_layout(graph: Graph) -> list[ValidationResult]:
    """Input must be rank-4 NHWC with static height, width and channels."""
    NAME = "input_layout"
    tensor = graph.input_tensor
    if tensor is None:
        return []

    if tensor.rank != 4:
        return [ValidationResult(NAME, Severity.WARNING,
            f"Input {tensor.describe()} has rank {tensor.rank}, "
            f"expected 4 (batch, height, width, channels)", subject=tensor.name)]

    dynamic = [i for i, d in enumerate(tensor.shape[1:], start=1)
               if not isinstance(d, int)]
    if dynamic:
        return [ValidationResult(NAME, Severity.WARNING,
            f"Input {tensor.describe()} has symbolic dims at {dynamic}; "
            f"only the batch dim may be symbolic", subject=tensor.name)]
    return []


@register_validator("element_types", Phase.POST_LOAD)
def validate_element_types(graph: Graph) -> list[ValidationResult]:
    """Input must be float32, uint8 or int8; output float32 or uint8."""
    NAME = "element_types"
    results = []

    tensor = graph.input_tensor
    if tensor is not None and tensor.element_type is None:
        results.append(ValidationResult(NAME, Severity.WARNING,
            f"Input {tensor.describe()} has unsupported element type",
            subject=tensor.name))

    tensor = graph.output_tensor
    if tensor is not None and tensor.element_type is None:
        results.append(ValidationResult(NAME, Severity.WARNING,
            f"Output {tensor.describe()} has unsupported element type",
            subject=tensor.name))
    elif tensor is not None and tensor.element_type.name == "INT8":
        results.append(ValidationResult(NAME, Severity.WARNING,
            f"Output {tensor.describe()} is int8; only float32 and uint8 "
            f"outputs can be extracted", subject=tensor.name))

    return results
