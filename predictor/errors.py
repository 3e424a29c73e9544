"""Error types for the inference session.

Every failure the session can hit is a PredictorError carrying an
ErrorCode (usable as an out-of-band status across the handle API) and
the Stage that failed. Nothing in the library terminates the process:
the caller decides whether a failure is fatal for its application.

    Stage.LOAD     : model file read, parse, operator resolution
    Stage.ATTACH   : backend strategy attachment
    Stage.ALLOCATE : input tensor buffer allocation
    Stage.MARSHAL  : input conversion into the plan's layout/type
    Stage.INVOKE   : running the bound plan
    Stage.EXTRACT  : reading and dequantizing the output
"""

from enum import Enum, IntEnum


class ErrorCode(IntEnum):
    """Status codes reported through the handle API's error indicator."""
    OK                       = 0
    INVALID_ARGUMENT         = 1
    FILE_NOT_MAPPABLE        = 2
    PLAN_CONSTRUCTION_FAILED = 3
    DELEGATE_ATTACH_FAILED   = 4
    ALLOCATION_FAILED        = 5
    SHAPE_MISMATCH           = 6
    TYPE_MISMATCH            = 7
    UNSUPPORTED_TYPE         = 8
    INVOCATION_FAILED        = 9
    NO_RESULT                = 10
    INVALID_HANDLE           = 11


class Stage(Enum):
    CONFIG   = "config"
    LOAD     = "load"
    ATTACH   = "attach"
    ALLOCATE = "allocate"
    MARSHAL  = "marshal"
    INVOKE   = "invoke"
    EXTRACT  = "extract"


class PredictorError(Exception):
    """Base class for all session failures."""

    code: ErrorCode = ErrorCode.INVALID_ARGUMENT
    stage: Stage = Stage.CONFIG

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"[{self.stage.value}] {message}")


class ConfigError(PredictorError):
    """Invalid construction arguments (batch size, thread count, ...)."""
    code = ErrorCode.INVALID_ARGUMENT
    stage = Stage.CONFIG


class LoadError(PredictorError):
    """The model could not be loaded or turned into an execution plan.

    `kind` is either ErrorCode.FILE_NOT_MAPPABLE (unreadable or not a
    valid graph) or ErrorCode.PLAN_CONSTRUCTION_FAILED (an operator could
    not be resolved, or the runtime rejected the graph).
    """
    stage = Stage.LOAD

    def __init__(self, kind: ErrorCode, message: str) -> None:
        if kind not in (ErrorCode.FILE_NOT_MAPPABLE,
                        ErrorCode.PLAN_CONSTRUCTION_FAILED):
            raise ValueError(f"Not a load error kind: {kind!r}")
        self.kind = kind
        self.code = kind
        super().__init__(message)


class DelegateAttachError(PredictorError):
    """A delegate was created but the plan refused to run on it."""
    code = ErrorCode.DELEGATE_ATTACH_FAILED
    stage = Stage.ATTACH


class AllocationError(PredictorError):
    code = ErrorCode.ALLOCATION_FAILED
    stage = Stage.ALLOCATE


class ShapeError(PredictorError):
    """Input rank, dimension or element count does not match the plan."""
    code = ErrorCode.SHAPE_MISMATCH
    stage = Stage.MARSHAL


class InputTypeMismatchError(PredictorError):
    """The caller's quantize flag disagrees with the plan's input type."""
    code = ErrorCode.TYPE_MISMATCH
    stage = Stage.MARSHAL


class UnsupportedTypeError(PredictorError):
    """A tensor element type outside float32 / uint8 / int8."""
    code = ErrorCode.UNSUPPORTED_TYPE

    def __init__(self, message: str, stage: Stage = Stage.MARSHAL) -> None:
        self.stage = stage
        super().__init__(message)


class InvocationError(PredictorError):
    code = ErrorCode.INVOCATION_FAILED
    stage = Stage.INVOKE


class NoResultError(PredictorError):
    """Predictions read before a successful predict() or after close()."""
    code = ErrorCode.NO_RESULT
    stage = Stage.EXTRACT
