"""Session: the primary user-facing API for inference.

Wraps load → attach → (marshal → invoke → extract)* behind a small
create/predict interface:

    session = Session("model.onnx", SessionConfig(batch_size=1))
    probs = session.predict(image)            # float NHWC input
    print(session.height, session.width, session.channels)
    print(session.output_length)

    # Quantized model, pre-quantized integer input:
    session = Session("model_u8.onnx", SessionConfig(quantize_input=True))
    probs = session.predict(pixels)           # uint8 output comes back as v / 255

    # With observability:
    session = Session(path, SessionConfig(verbose=True, profile=True))
    session.predict(image)
    print(session.last_profile)               # per-op timing breakdown

The backend is attached in the constructor, before the caller can reach
the session, so it never races with predict() and can never change.

A Session is not safe for concurrent predict() calls: the input buffer,
output buffer and profiler are session-local and unlocked. Serialize
calls per session or give each caller its own session.
"""

from __future__ import annotations

import logging
import os
from enum import Enum, auto
from pathlib import Path
from typing import Any

import numpy as np

from . import loader
from .backends import AttachedBackend, BackendStrategy, attach
from .config import SessionConfig
from .errors import (
    ConfigError, InvocationError, NoResultError, PredictorError, ShapeError, Stage,
    UnsupportedTypeError,
)
from .marshal import marshal, nhwc_dims
from .plan import ExecutionPlan
from .profiler import Profiler, RunProfile

logger = logging.getLogger(__name__)

UINT8_SCALE = 255.0


class SessionState(Enum):
    CONSTRUCTED      = auto()
    BACKEND_ATTACHED = auto()
    MARSHALLING      = auto()
    INVOKING         = auto()
    EXTRACTING       = auto()
    DESTROYED        = auto()


def dequantize(values: np.ndarray) -> np.ndarray:
    """Convert a raw output tensor to float32.

    float32 is copied verbatim; uint8 maps v -> v / 255. Anything else is
    unsupported.
    """
    if values.dtype == np.float32:
        return values.astype(np.float32, copy=True)
    if values.dtype == np.uint8:
        return values.astype(np.float32) / np.float32(UINT8_SCALE)
    raise UnsupportedTypeError(
        f"Output element type {values.dtype} is not supported "
        f"(expected float32 or uint8)",
        stage=Stage.EXTRACT,
    )


class Session:
    """Inference session over one model file.

    Owns the loaded graph, its execution plan, the attached backend, the
    output buffer and the profiler; close() releases all of them.
    """

    def __init__(self, model_path: str | Path,
                 config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self.config.validate()
        if not isinstance(model_path, (str, os.PathLike)):
            raise ConfigError(f"model_path must be a str or path, got {model_path!r}")
        self.model_path = Path(model_path)

        self._state = SessionState.CONSTRUCTED
        self._plan: ExecutionPlan | None = loader.load(self.model_path,
                                                       verbose=self.config.verbose)
        self._attached: AttachedBackend = attach(
            self._plan, self.config.backend,
            profile=self.config.profile, verbose=self.config.verbose,
        )
        self._state = SessionState.BACKEND_ATTACHED

        self._allocated = False
        self._profiler = Profiler(self.config.profiler_capacity) if self.config.profile else None
        self._last_profile: RunProfile | None = None

        # Refreshed on every predict()
        self._height = 0
        self._width = 0
        self._channels = 0
        self._output_length = 0
        self._output: np.ndarray | None = None
        self._has_result = False

        logger.debug("Session for %s attached to %s (%s)", self.model_path,
                      self._attached.requested, ", ".join(self._attached.providers))

    # --- Context manager ---

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --- Properties ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is SessionState.DESTROYED

    @property
    def batch_size(self) -> int:
        return self.config.batch_size

    @property
    def backend(self) -> BackendStrategy:
        """The requested strategy. Unchanged by a CPU fallback."""
        return self._attached.requested

    @property
    def backend_fell_back(self) -> bool:
        """True when the requested delegate was unavailable and the CPU runs instead."""
        return self._attached.fell_back

    @property
    def providers(self) -> list[str]:
        return list(self._attached.providers)

    @property
    def quantize_input(self) -> bool:
        return self.config.quantize_input

    @property
    def plan(self) -> ExecutionPlan | None:
        return self._plan

    @property
    def height(self) -> int:
        return self._height

    @property
    def width(self) -> int:
        return self._width

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def output_length(self) -> int:
        return self._output_length

    @property
    def last_profile(self) -> RunProfile | None:
        """Profiling results from the most recent predict() call."""
        return self._last_profile

    @property
    def predictions(self) -> np.ndarray:
        return self.get_predictions()

    def get_predictions(self) -> np.ndarray:
        """The output of the last successful predict().

        The returned buffer is owned by the session and is overwritten by
        the next predict(); copy it to keep it.
        """
        if self.closed:
            raise NoResultError("Session is closed")
        if not self._has_result or self._output is None:
            raise NoResultError("No predictions: predict() has not succeeded yet")
        return self._output

    # --- Prediction ---

    def predict(self, data: Any, quantize: bool | None = None) -> np.ndarray:
        """Run one inference on NHWC `data`.

        Args:
            data: batch*H*W*C elements, float (float models) or integers
                already in the model's 8-bit range (quantized models).
            quantize: Whether `data` is pre-quantized. Defaults to the
                session's quantize_input setting.

        Returns:
            The session's output buffer (see get_predictions()).

        Raises:
            PredictorError: any stage failure. No result is readable
                afterwards until a later predict() succeeds.
        """
        if self.closed:
            raise NoResultError("Session is closed")
        if quantize is None:
            quantize = self.config.quantize_input

        plan = self._plan
        self._has_result = False
        try:
            if not plan.is_bound:
                raise InvocationError("Execution plan was released after a backend failure")
            if not self._allocated:
                plan.allocate_tensors(self.config.batch_size)
                self._allocated = True

            self._state = SessionState.MARSHALLING
            tensor = plan.input_tensor
            _, height, width, channels = nhwc_dims(tensor.shape)
            self._height, self._width, self._channels = height, width, channels
            marshal(data, plan.input_buffer.shape, tensor.element_type,
                    quantize, out=plan.input_buffer)

            self._state = SessionState.INVOKING
            if self._profiler is not None:
                self._profiler.start()
            try:
                raw = plan.invoke()
            finally:
                if self._profiler is not None:
                    self._last_profile = self._profiler.stop(plan)
            if self._profiler is not None:
                self._log_profile(self._last_profile)

            self._state = SessionState.EXTRACTING
            self._extract(raw)
        except PredictorError as exc:
            logger.error("predict failed: %s", exc)
            raise
        finally:
            if self._state is not SessionState.DESTROYED:
                self._state = SessionState.BACKEND_ATTACHED

        return self._output

    def _extract(self, raw: np.ndarray) -> None:
        if raw.ndim == 0:
            raise ShapeError("Output tensor is a scalar, expected a trailing class dim")
        values = dequantize(raw).reshape(-1)

        if self._output is None or self._output.size != values.size:
            self._output = np.empty(values.size, dtype=np.float32)
        np.copyto(self._output, values)
        self._output_length = int(raw.shape[-1])
        self._has_result = True

    @staticmethod
    def _log_profile(profile: RunProfile) -> None:
        for e in profile.events:
            logger.info("%10.3f ms, Node %3d, OpCode %s", e.duration_us / 1e3,
                        e.index, e.opcode)
        if profile.dropped:
            logger.info("%d profiling events dropped (capacity reached)", profile.dropped)

    # --- Teardown ---

    def close(self) -> None:
        """Release the plan, the backend and the output buffer. Idempotent."""
        if self.closed:
            return
        if self._plan is not None:
            self._plan.release()
        self._plan = None
        self._output = None
        self._has_result = False
        self._profiler = None
        self._state = SessionState.DESTROYED
