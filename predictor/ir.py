"""Graph view over a loaded ONNX model.

The model file format and its operators belong to ONNX / ONNX Runtime;
this module only exposes what the session needs to make decisions:
which tensors exist, their shapes and element types, their quantization
parameters, and the graph-assigned index of every node (so profiler
events can be reported against the graph).

Shapes keep symbolic dims as-is: an int for a fixed dim, a str for a
named symbolic dim ("N", "batch"), None for an unnamed unknown dim.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum

import numpy as np
import onnx
from onnx import TensorProto, helper, numpy_helper

Dim = int | str | None


class ElementType(Enum):
    """Element types the session can marshal into or extract from.

    Values are ONNX TensorProto.DataType codes. Any other code is
    unsupported and fatal when it shows up on the input or output slot.
    """
    FLOAT32 = TensorProto.FLOAT
    UINT8   = TensorProto.UINT8
    INT8    = TensorProto.INT8

    @classmethod
    def from_code(cls, code: int) -> "ElementType | None":
        try:
            return cls(code)
        except ValueError:
            return None

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(helper.tensor_dtype_to_np_dtype(self.value))


# ONNX Runtime reports element types as strings on its NodeArg metadata.
_RUNTIME_TYPES: dict[str, int] = {
    "tensor(float)":   TensorProto.FLOAT,
    "tensor(uint8)":   TensorProto.UINT8,
    "tensor(int8)":    TensorProto.INT8,
    "tensor(uint16)":  TensorProto.UINT16,
    "tensor(int16)":   TensorProto.INT16,
    "tensor(int32)":   TensorProto.INT32,
    "tensor(int64)":   TensorProto.INT64,
    "tensor(string)":  TensorProto.STRING,
    "tensor(bool)":    TensorProto.BOOL,
    "tensor(float16)": TensorProto.FLOAT16,
    "tensor(double)":  TensorProto.DOUBLE,
    "tensor(uint32)":  TensorProto.UINT32,
    "tensor(uint64)":  TensorProto.UINT64,
    "tensor(bfloat16)": TensorProto.BFLOAT16,
}


def elem_type_from_runtime(type_str: str) -> int:
    """Map an ONNX Runtime type string to a TensorProto code (UNDEFINED if unknown)."""
    return _RUNTIME_TYPES.get(type_str, TensorProto.UNDEFINED)


def canonical_domain(domain: str) -> str:
    """Treat "ai.onnx" and "" as the same default operator set."""
    return "" if domain in ("", "ai.onnx") else domain


def elem_type_name(code: int) -> str:
    try:
        return TensorProto.DataType.Name(code)
    except ValueError:
        return f"UNKNOWN({code})"


@dataclass(frozen=True)
class TensorInfo:
    """Metadata for a named tensor slot.

    `scale` and `zero_point` are the affine quantization parameters when the
    graph quantizes or dequantizes this tensor, 0.0 / 0 otherwise.
    """
    name: str
    shape: tuple[Dim, ...]
    elem_type: int = TensorProto.FLOAT
    scale: float = 0.0
    zero_point: int = 0

    @property
    def element_type(self) -> ElementType | None:
        return ElementType.from_code(self.elem_type)

    @property
    def type_name(self) -> str:
        return elem_type_name(self.elem_type)

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def is_static(self) -> bool:
        return all(isinstance(d, int) and d >= 0 for d in self.shape)

    @property
    def nbytes(self) -> int | None:
        """Byte size, or None if the shape is symbolic or the type has no fixed width."""
        if not self.is_static:
            return None
        try:
            itemsize = np.dtype(helper.tensor_dtype_to_np_dtype(self.elem_type)).itemsize
        except (KeyError, TypeError):
            return None
        if self.elem_type == TensorProto.STRING:
            return None
        return int(np.prod(self.shape, dtype=np.int64)) * itemsize

    def describe(self) -> str:
        shape_str = "x".join("?" if d is None else str(d) for d in self.shape)
        return f"{self.name} [{shape_str}] {self.type_name}"


@dataclass(frozen=True)
class NodeInfo:
    """A graph node. `index` is its position in the graph's node list."""
    index: int
    name: str
    op_type: str
    domain: str = ""
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()


def _dims_of(type_proto: onnx.TypeProto) -> tuple[Dim, ...]:
    if not type_proto.tensor_type.HasField("shape"):
        return ()
    dims: list[Dim] = []
    for d in type_proto.tensor_type.shape.dim:
        if d.HasField("dim_value"):
            dims.append(int(d.dim_value))
        elif d.HasField("dim_param"):
            dims.append(d.dim_param)
        else:
            dims.append(None)
    return tuple(dims)


def _quantization_params(model: onnx.ModelProto) -> dict[str, tuple[float, int]]:
    """Collect (scale, zero_point) for tensors touched by Q/DQ nodes.

    DequantizeLinear(x, scale, zp) describes its input x; QuantizeLinear
    and QLinear* ops describe their output. Per-axis parameters report
    the first channel.
    """
    initializers = {init.name: init for init in model.graph.initializer}

    def _scalar(name: str, default):
        init = initializers.get(name)
        if init is None:
            return default
        values = numpy_helper.to_array(init).reshape(-1)
        return values[0].item() if values.size else default

    params: dict[str, tuple[float, int]] = {}
    for node in model.graph.node:
        if node.op_type == "DequantizeLinear" and len(node.input) >= 2:
            zp_name = node.input[2] if len(node.input) > 2 else ""
            params[node.input[0]] = (float(_scalar(node.input[1], 0.0)),
                                     int(_scalar(zp_name, 0)))
        elif node.op_type == "QuantizeLinear" and len(node.input) >= 2:
            zp_name = node.input[2] if len(node.input) > 2 else ""
            params[node.output[0]] = (float(_scalar(node.input[1], 0.0)),
                                      int(_scalar(zp_name, 0)))
        elif node.op_type.startswith("QLinear") and len(node.input) >= 2:
            # Output scale/zero point are the last two inputs for every QLinear op
            params[node.output[0]] = (float(_scalar(node.input[-2], 0.0)),
                                      int(_scalar(node.input[-1], 0)))
    return params


class Graph:
    """Immutable, shareable view of a parsed model.

    Nodes keep the graph's own order; tensors are looked up by name.
    Inputs exclude initializers (older IR versions list weights as inputs).
    """

    def __init__(self, model: onnx.ModelProto) -> None:
        self.model = model
        g = model.graph
        self.name: str = g.name
        self.opsets: dict[str, int] = {
            canonical_domain(imp.domain): imp.version for imp in model.opset_import
        }
        self.constants: list[str] = [init.name for init in g.initializer]
        constant_set = set(self.constants)
        self.inputs: list[str] = [v.name for v in g.input if v.name not in constant_set]
        self.outputs: list[str] = [v.name for v in g.output]

        quant = _quantization_params(model)
        self.tensors: dict[str, TensorInfo] = {}
        for value in list(g.input) + list(g.value_info) + list(g.output):
            scale, zero_point = quant.get(value.name, (0.0, 0))
            self.tensors[value.name] = TensorInfo(
                name=value.name,
                shape=_dims_of(value.type),
                elem_type=value.type.tensor_type.elem_type,
                scale=scale,
                zero_point=zero_point,
            )
        for init in g.initializer:
            scale, zero_point = quant.get(init.name, (0.0, 0))
            self.tensors[init.name] = TensorInfo(
                name=init.name,
                shape=tuple(int(d) for d in init.dims),
                elem_type=init.data_type,
                scale=scale,
                zero_point=zero_point,
            )

        self.nodes: list[NodeInfo] = [
            NodeInfo(
                index=i,
                name=node.name,
                op_type=node.op_type,
                domain=node.domain,
                inputs=tuple(node.input),
                outputs=tuple(node.output),
            )
            for i, node in enumerate(g.node)
        ]

    @property
    def input_tensor(self) -> TensorInfo | None:
        """First graph input, the one the session feeds."""
        return self.tensors[self.inputs[0]] if self.inputs else None

    @property
    def output_tensor(self) -> TensorInfo | None:
        """First graph output, the one the session extracts."""
        return self.tensors[self.outputs[0]] if self.outputs else None

    def node_index(self) -> dict[str, int]:
        """Node name -> graph-assigned index."""
        return {node.name: node.index for node in self.nodes}

    def serialize(self) -> bytes:
        return self.model.SerializeToString()

    def summary(self) -> str:
        """Human-readable summary of the graph structure."""
        header = (f"Graph '{self.name}': {len(self.nodes)} nodes, "
                  f"{len(self.tensors)} tensors ({len(self.inputs)} inputs, "
                  f"{len(self.constants)} constants, {len(self.outputs)} outputs)")

        op_counts = Counter(node.op_type for node in self.nodes)
        ops_str = ", ".join(f"{name}: {cnt}" for name, cnt in op_counts.most_common())
        opsets_str = ", ".join(f"{dom or 'ai.onnx'}={ver}"
                               for dom, ver in sorted(self.opsets.items()))

        lines = [header, f"  Opsets:  {opsets_str}", f"  Ops:     {ops_str}"]
        if self.inputs:
            lines.append("  Inputs:  " + ", ".join(
                self.tensors[n].describe() for n in self.inputs))
        if self.outputs:
            lines.append("  Outputs: " + ", ".join(
                self.tensors[n].describe() for n in self.outputs))
        return "\n".join(lines)
