"""Shared fixtures and helpers for the test suite.

pytest discovers conftest.py automatically, so fixtures defined here are
available to all test files in this directory without explicit imports.
Helpers are imported directly (`from conftest import ...`).

Every model is built with onnx.helper and written to tmp_path, so the
suite needs nothing beyond onnx and onnxruntime.
"""

from pathlib import Path

import numpy as np
import onnx
import onnxruntime as ort
import pytest
from onnx import TensorProto, helper, numpy_helper


OPSET = 13
IR_VERSION = 8

SOFTMAX_SEED = 0


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------

def make_model(nodes, inputs, outputs, initializers=(), opset=OPSET,
               extra_opsets=(), name="test_graph") -> onnx.ModelProto:
    """Wrap nodes into a ModelProto the installed runtime can load."""
    graph = helper.make_graph(nodes, name, inputs, outputs,
                              initializer=list(initializers))
    opsets = [helper.make_opsetid("", opset)]
    opsets += [helper.make_opsetid(domain, version) for domain, version in extra_opsets]
    model = helper.make_model(graph, opset_imports=opsets,
                              producer_name="predictor-tests")
    model.ir_version = IR_VERSION
    return model


def save_model(model: onnx.ModelProto, path: Path) -> Path:
    onnx.save(model, str(path))
    return path


def softmax_weights() -> np.ndarray:
    rng = np.random.default_rng(SOFTMAX_SEED)
    return rng.standard_normal((16, 3)).astype(np.float32)


def softmax_model() -> onnx.ModelProto:
    """1x4x4x1 float32 image -> Reshape -> MatMul(16x3) -> Softmax -> 1x3 float32."""
    x = helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 4, 4, 1])
    y = helper.make_tensor_value_info("probs", TensorProto.FLOAT, [1, 3])
    shape = numpy_helper.from_array(np.array([1, 16], dtype=np.int64), "flat_shape")
    weights = numpy_helper.from_array(softmax_weights(), "weights")
    nodes = [
        helper.make_node("Reshape", ["input", "flat_shape"], ["flat"], name="flatten"),
        helper.make_node("MatMul", ["flat", "weights"], ["logits"], name="classifier"),
        helper.make_node("Softmax", ["logits"], ["probs"], name="softmax", axis=-1),
    ]
    return make_model(nodes, [x], [y], [shape, weights])


def softmax_reference(data: np.ndarray) -> np.ndarray:
    """What softmax_model computes, in numpy."""
    logits = data.reshape(1, 16).astype(np.float32) @ softmax_weights()
    e = np.exp(logits - logits.max(axis=-1, keepdims=True))
    return (e / e.sum(axis=-1, keepdims=True)).reshape(-1)


def passthrough_model(elem_type: int, height: int, width: int, channels: int = 1,
                      batch=1) -> onnx.ModelProto:
    """NHWC input -> Flatten -> (batch, H*W*C) output of the same element type."""
    x = helper.make_tensor_value_info("input", elem_type, [batch, height, width, channels])
    y = helper.make_tensor_value_info("output", elem_type, [batch, height * width * channels])
    nodes = [helper.make_node("Flatten", ["input"], ["output"], name="flatten", axis=1)]
    return make_model(nodes, [x], [y])


def cast_model(in_type: int, out_type: int, height: int = 2, width: int = 2) -> onnx.ModelProto:
    """NHWC input of `in_type` -> Cast(out_type) -> Flatten."""
    x = helper.make_tensor_value_info("input", in_type, [1, height, width, 1])
    y = helper.make_tensor_value_info("output", out_type, [1, height * width])
    nodes = [
        helper.make_node("Cast", ["input"], ["cast"], name="cast", to=out_type),
        helper.make_node("Flatten", ["cast"], ["output"], name="flatten", axis=1),
    ]
    return make_model(nodes, [x], [y])


def rank3_model() -> onnx.ModelProto:
    x = helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 4, 4])
    y = helper.make_tensor_value_info("output", TensorProto.FLOAT, [1, 16])
    nodes = [helper.make_node("Flatten", ["input"], ["output"], name="flatten", axis=1)]
    return make_model(nodes, [x], [y])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def softmax_path(tmp_path):
    return save_model(softmax_model(), tmp_path / "softmax.onnx")


@pytest.fixture
def uint8_path(tmp_path):
    """16x16 uint8 image passed straight through: covers every uint8 value."""
    return save_model(passthrough_model(TensorProto.UINT8, 16, 16),
                      tmp_path / "identity_u8.onnx")


@pytest.fixture
def int8_path(tmp_path):
    return save_model(cast_model(TensorProto.INT8, TensorProto.FLOAT),
                      tmp_path / "int8_in.onnx")


@pytest.fixture
def int32_out_path(tmp_path):
    return save_model(cast_model(TensorProto.FLOAT, TensorProto.INT32),
                      tmp_path / "int32_out.onnx")


@pytest.fixture
def rank3_path(tmp_path):
    return save_model(rank3_model(), tmp_path / "rank3.onnx")


@pytest.fixture
def dynamic_batch_path(tmp_path):
    return save_model(passthrough_model(TensorProto.FLOAT, 2, 2, batch="N"),
                      tmp_path / "dynamic_batch.onnx")


@pytest.fixture
def cpu_only(monkeypatch):
    """Pretend the runtime build has no GPU or accelerator providers."""
    monkeypatch.setattr(ort, "get_available_providers",
                        lambda: ["CPUExecutionProvider"])


@pytest.fixture
def image():
    rng = np.random.default_rng(1)
    return rng.standard_normal(16).astype(np.float32)
