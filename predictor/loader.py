"""Graph loading: model file -> validated Graph -> unbound ExecutionPlan.

    plan = load("mobilenet.onnx", verbose=True)

Steps:
    1. read and parse the file           (FILE_NOT_MAPPABLE on failure)
    2. name unnamed nodes                 (<OpType>_<index>, for profiling)
    3. resolve every operator against the builtin operator registry
       at the model's opset               (PLAN_CONSTRUCTION_FAILED)
    4. check the model and infer shapes   (PLAN_CONSTRUCTION_FAILED)
    5. run POST_LOAD validators           (PLAN_CONSTRUCTION_FAILED on ERROR)

With verbose=True, the graph summary and one line per tensor (name, byte
size, element type, quantization scale and zero point) are logged.
"""

from __future__ import annotations

import logging
from pathlib import Path

import onnx
from google.protobuf.message import DecodeError
from onnx import checker, defs, shape_inference

from .errors import ErrorCode, LoadError
from .ir import Graph, canonical_domain
from .plan import ExecutionPlan
from .validation import Phase, Severity, ValidationError, log_results, run_validators

logger = logging.getLogger(__name__)

# Operator sets the builtin registry resolves against
BUILTIN_DOMAINS = ("", "ai.onnx.ml")


def _read_model(path: Path) -> onnx.ModelProto:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise LoadError(ErrorCode.FILE_NOT_MAPPABLE,
                        f"Failed to read model {path}: {exc}") from exc
    try:
        model = onnx.load_model_from_string(data)
    except (DecodeError, ValueError) as exc:
        raise LoadError(ErrorCode.FILE_NOT_MAPPABLE,
                        f"Failed to parse model {path}: {exc}") from exc
    if model.ir_version <= 0 or not model.HasField("graph"):
        raise LoadError(ErrorCode.FILE_NOT_MAPPABLE,
                        f"{path} is not a valid model (no IR version or graph)")
    return model


def _name_nodes(model: onnx.ModelProto) -> None:
    """Give unnamed nodes a stable name so runtime traces map back to indices."""
    taken = {node.name for node in model.graph.node if node.name}
    for i, node in enumerate(model.graph.node):
        if node.name:
            continue
        name = f"{node.op_type}_{i}"
        while name in taken:
            name += "_"
        node.name = name
        taken.add(name)


def resolve_operators(model: onnx.ModelProto) -> list[str]:
    """Return a description of every node the builtin registry cannot resolve."""
    opsets = {canonical_domain(imp.domain): imp.version for imp in model.opset_import}
    unresolved = []
    for i, node in enumerate(model.graph.node):
        domain = canonical_domain(node.domain)
        if domain not in BUILTIN_DOMAINS:
            unresolved.append(f"node {i} '{node.name}': {node.op_type} "
                              f"(unknown domain '{node.domain}')")
            continue
        version = opsets.get(domain)
        if version is None:
            unresolved.append(f"node {i} '{node.name}': {node.op_type} "
                              f"(no opset imported for domain '{node.domain}')")
            continue
        try:
            defs.get_schema(node.op_type, version, domain)
        except defs.SchemaError:
            unresolved.append(f"node {i} '{node.name}': {node.op_type} "
                              f"(not in opset {version})")
    return unresolved


def _log_tensors(graph: Graph) -> None:
    logger.info("%s", graph.summary())
    for i, (name, t) in enumerate(graph.tensors.items()):
        nbytes = t.nbytes
        logger.info("%d: %s, %s, %s, %s, %s", i, name,
                    "?" if nbytes is None else nbytes,
                    t.type_name, t.scale, t.zero_point)


def load(path: str | Path, verbose: bool = False) -> ExecutionPlan:
    """Load a model file into an unbound execution plan.

    Raises:
        LoadError: kind FILE_NOT_MAPPABLE or PLAN_CONSTRUCTION_FAILED.
    """
    path = Path(path)
    model = _read_model(path)
    _name_nodes(model)

    unresolved = resolve_operators(model)
    if unresolved:
        raise LoadError(ErrorCode.PLAN_CONSTRUCTION_FAILED,
                        "Failed to resolve operators:\n  " + "\n  ".join(unresolved))

    try:
        checker.check_model(model)
        model = shape_inference.infer_shapes(model)
    except (checker.ValidationError, shape_inference.InferenceError) as exc:
        raise LoadError(ErrorCode.PLAN_CONSTRUCTION_FAILED,
                        f"Failed to construct execution plan: {exc}") from exc

    graph = Graph(model)
    try:
        results = run_validators(Phase.POST_LOAD, graph, fail_on=Severity.ERROR)
    except ValidationError as exc:
        raise LoadError(ErrorCode.PLAN_CONSTRUCTION_FAILED, str(exc)) from exc

    log_results(results, logger, verbose)

    if verbose:
        _log_tensors(graph)

    return ExecutionPlan(graph)
