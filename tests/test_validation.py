"""Tests for the validation registry and the load/attach validators."""

import logging
from types import SimpleNamespace

import pytest
from onnx import TensorProto, helper

import predictor.plan
from predictor.backends import CPUStrategy, attach
from predictor.errors import ErrorCode, LoadError
from predictor.ir import Graph
from predictor.loader import load
from predictor.validation import (
    Phase,
    Severity,
    ValidationError,
    ValidationResult,
    log_results,
    register_validator,
    run_validators,
)
from conftest import cast_model, make_model, passthrough_model, rank3_model, softmax_model


def _errors(results: list[ValidationResult]) -> list[ValidationResult]:
    return [r for r in results if r.severity == Severity.ERROR]


def _warnings(results: list[ValidationResult]) -> list[ValidationResult]:
    return [r for r in results if r.severity == Severity.WARNING]


def _post_load(model) -> list[ValidationResult]:
    return run_validators(Phase.POST_LOAD, Graph(model), fail_on=None)


class TestLoadValidators:

    def test_valid_graph_passes(self):
        results = _post_load(softmax_model())
        assert not _errors(results)
        assert not _warnings(results)

    def test_no_outputs_is_error(self):
        x = helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 2, 2, 1])
        model = make_model([], [x], [])
        errors = _errors(_post_load(model))
        assert any("no outputs" in r.message for r in errors)

    def test_extra_inputs_warn(self):
        a = helper.make_tensor_value_info("a", TensorProto.FLOAT, [1, 2, 2, 1])
        b = helper.make_tensor_value_info("b", TensorProto.FLOAT, [1, 2, 2, 1])
        y = helper.make_tensor_value_info("y", TensorProto.FLOAT, [1, 2, 2, 1])
        model = make_model([helper.make_node("Add", ["a", "b"], ["y"])], [a, b], [y])
        warnings = _warnings(_post_load(model))
        assert any("only 'a' is fed" in r.message for r in warnings)

    def test_extra_outputs_info(self):
        x = helper.make_tensor_value_info("x", TensorProto.FLOAT, [1, 2, 2, 1])
        y = helper.make_tensor_value_info("y", TensorProto.FLOAT, [1, 2, 2, 1])
        z = helper.make_tensor_value_info("z", TensorProto.FLOAT, [1, 2, 2, 1])
        nodes = [helper.make_node("Relu", ["x"], ["y"]), helper.make_node("Neg", ["x"], ["z"])]
        results = _post_load(make_model(nodes, [x], [y, z]))
        assert not _warnings(results)
        assert any(r.severity == Severity.INFO and "only 'y' is read" in r.message
                   for r in results)

    def test_rank_warning(self):
        warnings = _warnings(_post_load(rank3_model()))
        assert [r.validator for r in warnings] == ["input_layout"]

    def test_symbolic_spatial_dims_warn(self):
        x = helper.make_tensor_value_info("x", TensorProto.FLOAT, [1, "H", "W", 3])
        y = helper.make_tensor_value_info("y", TensorProto.FLOAT, [1, "H", "W", 3])
        model = make_model([helper.make_node("Relu", ["x"], ["y"])], [x], [y])
        warnings = _warnings(_post_load(model))
        assert any("symbolic dims at [1, 2]" in r.message for r in warnings)

    def test_symbolic_batch_is_fine(self):
        model = passthrough_model(TensorProto.FLOAT, 2, 2, batch="N")
        assert not _warnings(_post_load(model))

    @pytest.mark.parametrize("in_type,out_type", [
        (TensorProto.DOUBLE, TensorProto.FLOAT),
        (TensorProto.FLOAT, TensorProto.INT32),
        (TensorProto.FLOAT, TensorProto.INT8),
    ], ids=["double_in", "int32_out", "int8_out"])
    def test_element_type_warnings(self, in_type, out_type):
        warnings = _warnings(_post_load(cast_model(in_type, out_type)))
        assert [r.validator for r in warnings] == ["element_types"]

    def test_fail_on_error_raises(self):
        x = helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 2, 2, 1])
        with pytest.raises(ValidationError) as info:
            run_validators(Phase.POST_LOAD, Graph(make_model([], [x], [])))
        assert info.value.phase == Phase.POST_LOAD
        assert "POST_LOAD" in str(info.value)

    def test_warnings_do_not_raise(self):
        results = run_validators(Phase.POST_LOAD, Graph(rank3_model()),
                                 fail_on=Severity.ERROR)
        assert _warnings(results)


class _FakeArg(SimpleNamespace):
    pass


class _FakeRuntime:
    """Runtime session stand-in reporting chosen slot metadata."""

    def __init__(self, inputs, outputs):
        self._inputs = inputs
        self._outputs = outputs

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def get_providers(self):
        return ["CPUExecutionProvider"]


class TestAttachValidators:

    def _attach_with(self, monkeypatch, path, inputs, outputs):
        monkeypatch.setattr(predictor.plan, "_create_runtime_session",
                            lambda *args: _FakeRuntime(inputs, outputs))
        plan = load(path)
        return plan, attach(plan, CPUStrategy())

    def test_matching_runtime_passes(self, softmax_path, monkeypatch):
        inputs = [_FakeArg(name="input", shape=[1, 4, 4, 1], type="tensor(float)")]
        outputs = [_FakeArg(name="probs", shape=[1, 3], type="tensor(float)")]
        plan, attached = self._attach_with(monkeypatch, softmax_path, inputs, outputs)
        assert plan.is_bound
        assert attached.providers == ["CPUExecutionProvider"]

    def test_renamed_input_is_error(self, softmax_path, monkeypatch):
        inputs = [_FakeArg(name="other", shape=[1, 4, 4, 1], type="tensor(float)")]
        outputs = [_FakeArg(name="probs", shape=[1, 3], type="tensor(float)")]
        with pytest.raises(LoadError, match="runtime_slots") as info:
            self._attach_with(monkeypatch, softmax_path, inputs, outputs)
        assert info.value.kind == ErrorCode.PLAN_CONSTRUCTION_FAILED

    def test_type_disagreement_is_error(self, softmax_path, monkeypatch):
        inputs = [_FakeArg(name="input", shape=[1, 4, 4, 1], type="tensor(uint8)")]
        outputs = [_FakeArg(name="probs", shape=[1, 3], type="tensor(float)")]
        with pytest.raises(LoadError, match="UINT8"):
            self._attach_with(monkeypatch, softmax_path, inputs, outputs)

    def test_rank_disagreement_is_error(self, softmax_path, monkeypatch):
        inputs = [_FakeArg(name="input", shape=[1, 16], type="tensor(float)")]
        outputs = [_FakeArg(name="probs", shape=[1, 3], type="tensor(float)")]
        with pytest.raises(LoadError, match="rank 2"):
            self._attach_with(monkeypatch, softmax_path, inputs, outputs)

    def test_providers_reported(self, softmax_path):
        plan = load(softmax_path)
        attach(plan, CPUStrategy())
        results = run_validators(Phase.POST_ATTACH, plan, fail_on=None)
        info = [r for r in results if r.validator == "providers"]
        assert info and "CPUExecutionProvider" in info[0].message


class TestRegistry:

    def test_duplicate_name_rejected(self):
        with pytest.raises(ValueError, match="already registered"):
            register_validator("io_slots", Phase.POST_LOAD)(lambda graph: [])

    def test_severity_order(self):
        assert Severity.ERROR.at_least(Severity.WARNING)
        assert Severity.WARNING.at_least(Severity.WARNING)
        assert not Severity.INFO.at_least(Severity.WARNING)

    def test_fail_on_warning(self):
        with pytest.raises(ValidationError) as info:
            run_validators(Phase.POST_LOAD, Graph(rank3_model()), fail_on=Severity.WARNING)
        assert [r.validator for r in info.value.fatal] == ["input_layout"]

    def test_result_str_names_subject(self):
        r = ValidationResult("input_layout", Severity.WARNING, "bad", subject="input")
        assert str(r) == "[WARNING] input_layout (input): bad"

    def test_log_results(self, caplog):
        results = [
            ValidationResult("a", Severity.WARNING, "shown"),
            ValidationResult("b", Severity.INFO, "hidden"),
        ]
        log = logging.getLogger("predictor.tests")
        with caplog.at_level(logging.INFO, logger="predictor.tests"):
            log_results(results, log)
        assert "shown" in caplog.text
        assert "hidden" not in caplog.text
        with caplog.at_level(logging.INFO, logger="predictor.tests"):
            log_results(results, log, verbose=True)
        assert "hidden" in caplog.text
