"""Single-input inference sessions over ONNX Runtime.

    from predictor import Session, SessionConfig, GPUStrategy

    with Session("model.onnx", SessionConfig(backend=GPUStrategy())) as s:
        probs = s.predict(image)

The handle-based API for boundary callers lives in predictor.api.
"""

from .backends import (  # noqa: F401
    AcceleratorStrategy,
    BackendMode,
    BackendStrategy,
    CPUStrategy,
    GPUStrategy,
    strategy_from_mode,
)
from .config import SessionConfig  # noqa: F401
from .errors import (  # noqa: F401
    AllocationError,
    ConfigError,
    DelegateAttachError,
    ErrorCode,
    InputTypeMismatchError,
    InvocationError,
    LoadError,
    NoResultError,
    PredictorError,
    ShapeError,
    Stage,
    UnsupportedTypeError,
)
from .loader import load  # noqa: F401
from .session import Session, SessionState  # noqa: F401
