"""Execution plan: a loaded Graph bound to an ONNX Runtime session.

The plan is the runtime-bound form of the graph. It is owned by exactly
one Session and is bound to a backend at most once:

    plan = ExecutionPlan(graph)
    plan.bind(providers, options)        # backend attachment, once
    plan.allocate_tensors(batch_size)    # reusable input buffer
    marshal(data, ..., out=plan.input_buffer)
    output = plan.invoke()

Slot metadata (input_tensor / output_tensor) is read from the bound
runtime session, so shape and element-type decisions follow what the
runtime will actually execute rather than what the file declares.
"""

from __future__ import annotations

import logging

import numpy as np
import onnxruntime as ort

from .errors import (
    AllocationError, DelegateAttachError, InvocationError, ShapeError, Stage,
    UnsupportedTypeError,
)
from .ir import Graph, TensorInfo, elem_type_from_runtime
from .profiler import discard_trace

logger = logging.getLogger(__name__)

# An execution provider name, or (name, provider options)
ProviderSpec = str | tuple[str, dict[str, str]]


def _create_runtime_session(model_bytes: bytes, options: ort.SessionOptions,
                            providers: list[ProviderSpec]) -> ort.InferenceSession:
    """Build the runtime session. Module-level so tests can substitute it."""
    return ort.InferenceSession(model_bytes, sess_options=options, providers=providers)


class ExecutionPlan:
    """A Graph plus the runtime session that executes it."""

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self._model_bytes: bytes = graph.serialize()
        self._runtime: ort.InferenceSession | None = None
        self._providers: list[ProviderSpec] = []
        self._options: ort.SessionOptions | None = None
        self._input_buffer: np.ndarray | None = None
        self._armed = False   # runtime session is collecting an unflushed trace

    # --- Backend binding ---

    @property
    def is_bound(self) -> bool:
        return self._runtime is not None

    @property
    def providers(self) -> list[str]:
        """Execution providers the bound runtime actually uses, in priority order."""
        if self._runtime is None:
            return []
        return list(self._runtime.get_providers())

    @property
    def profiling(self) -> bool:
        return self._options is not None and bool(self._options.enable_profiling)

    def bind(self, providers: list[ProviderSpec], options: ort.SessionOptions) -> None:
        """Bind the plan to a set of execution providers.

        Runtime errors propagate unchanged; the backend selector decides
        whether they are a plan failure or a delegate rejection.
        """
        if self._runtime is not None:
            raise RuntimeError("Execution plan is already bound to a backend")
        self._runtime = _create_runtime_session(self._model_bytes, options, providers)
        self._providers = list(providers)
        self._options = options
        self._armed = bool(options.enable_profiling)

    # --- Tensor slots ---

    def _slot(self, arg, graph_info: TensorInfo | None) -> TensorInfo:
        scale, zero_point = 0.0, 0
        if graph_info is not None and graph_info.name == arg.name:
            scale, zero_point = graph_info.scale, graph_info.zero_point
        return TensorInfo(
            name=arg.name,
            shape=tuple(arg.shape),
            elem_type=elem_type_from_runtime(arg.type),
            scale=scale,
            zero_point=zero_point,
        )

    @property
    def input_tensor(self) -> TensorInfo:
        if self._runtime is None:
            return self.graph.input_tensor
        return self._slot(self._runtime.get_inputs()[0], self.graph.input_tensor)

    @property
    def output_tensor(self) -> TensorInfo:
        if self._runtime is None:
            return self.graph.output_tensor
        return self._slot(self._runtime.get_outputs()[0], self.graph.output_tensor)

    @property
    def input_buffer(self) -> np.ndarray | None:
        """The input tensor memory marshalled into before each invoke()."""
        return self._input_buffer

    def allocate_tensors(self, batch_size: int) -> np.ndarray:
        """Allocate the input buffer for `batch_size`.

        A symbolic leading dim takes the session's batch size; a fixed
        leading dim must agree with it. Every other dim must be static.
        """
        tensor = self.input_tensor
        if tensor.rank == 0:
            raise ShapeError(f"Input {tensor.describe()} is a scalar, expected a batched tensor")

        batch_dim = tensor.shape[0]
        if isinstance(batch_dim, int) and batch_dim != batch_size:
            raise ShapeError(
                f"Input {tensor.describe()} has fixed batch {batch_dim}, "
                f"session batch size is {batch_size}"
            )
        shape = (batch_size, *tensor.shape[1:])
        if not all(isinstance(d, int) and d > 0 for d in shape):
            raise ShapeError(f"Input {tensor.describe()} has non-static dims {shape}")

        element_type = tensor.element_type
        if element_type is None:
            raise UnsupportedTypeError(
                f"Input {tensor.describe()} has unsupported element type",
                stage=Stage.ALLOCATE,
            )

        try:
            self._input_buffer = np.zeros(shape, dtype=element_type.dtype)
        except (MemoryError, ValueError) as exc:
            raise AllocationError(
                f"Failed to allocate input tensor {shape} {tensor.type_name}: {exc}"
            ) from exc
        return self._input_buffer

    # --- Execution ---

    def invoke(self) -> np.ndarray:
        """Run the graph on the current input buffer; returns the first output."""
        if self._runtime is None:
            raise InvocationError("Execution plan is not bound to a backend")
        if self._input_buffer is None:
            raise InvocationError("Input tensors have not been allocated")

        input_name = self._runtime.get_inputs()[0].name
        output_name = self._runtime.get_outputs()[0].name
        try:
            outputs = self._runtime.run([output_name], {input_name: self._input_buffer})
        except Exception as exc:
            raise InvocationError(f"Runtime failed to execute the graph: {exc}") from exc
        return np.asarray(outputs[0])

    # --- Profiling ---

    def end_profiling(self) -> str:
        """Flush the runtime's trace; returns the trace file path ("" if none)."""
        if self._runtime is None or not self._armed:
            return ""
        self._armed = False
        return self._runtime.end_profiling()

    def restart_profiling(self) -> None:
        """Re-arm profiling after a flush.

        ONNX Runtime stops collecting once its trace is written, so the
        runtime session is rebuilt with the same providers and options.
        The rebuilt session must land on the providers the plan was bound
        to; otherwise the plan is released and DelegateAttachError raised.
        """
        if self._runtime is None or not self.profiling or self._armed:
            return
        bound = self.providers
        try:
            runtime = _create_runtime_session(
                self._model_bytes, self._options, self._providers
            )
        except Exception as exc:
            self.release()
            raise DelegateAttachError(
                f"Failed to rebuild the runtime on {bound}: {exc}"
            ) from exc
        self._runtime = runtime
        self._armed = True

        rebuilt = self.providers
        if rebuilt != bound:
            self.release()
            raise DelegateAttachError(
                f"Runtime rebuilt on {rebuilt}, plan was bound to {bound}"
            )

    def release(self) -> None:
        """Drop the runtime session and buffers. Safe to call repeatedly.

        An armed profiling session is flushed first and its trace deleted.
        """
        if self._runtime is not None and self._armed:
            path = self.end_profiling()
            if path:
                discard_trace(path)
        self._runtime = None
        self._input_buffer = None
