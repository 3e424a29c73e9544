"""Opaque-handle API over sessions.

For callers across a language or process boundary that hold an integer
instead of a Session object:

    h = create("model.onnx", batch=1, mode=0)
    if not h:
        print(last_error())
    predict(h, None, image, quantize=False)
    probs = get_predictions(h)[:get_pred_len(h)]
    destroy(h)

Handles index a generation-checked table, so a stale handle (destroyed,
or from another table) or 0 resolves to nothing. Every function
tolerates such handles and returns its zero/None sentinel instead of
raising. Failures are reported through last_error(), a per-thread
indicator cleared by every successful call.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from .config import SessionConfig
from .errors import ErrorCode, PredictorError
from .session import Session

logger = logging.getLogger(__name__)

NULL_HANDLE = 0

_INDEX_BITS = 32
_INDEX_MASK = (1 << _INDEX_BITS) - 1


@dataclass(frozen=True)
class ErrorInfo:
    code: ErrorCode = ErrorCode.OK
    message: str = ""

    def __bool__(self) -> bool:
        return self.code != ErrorCode.OK


@dataclass
class _Slot:
    generation: int = 1
    session: Session | None = None


class HandleTable:
    """Maps integer handles to owned sessions.

    A handle packs (generation << 32) | (slot index + 1), so 0 is never a
    valid handle. Removing a session bumps the slot's generation; any
    handle minted before that no longer resolves. The lock guards the
    table only, not the sessions.
    """

    def __init__(self) -> None:
        self._slots: list[_Slot] = []
        self._free: list[int] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots if s.session is not None)

    @staticmethod
    def _unpack(handle: int) -> tuple[int, int]:
        return (handle & _INDEX_MASK) - 1, handle >> _INDEX_BITS

    def insert(self, session: Session) -> int:
        with self._lock:
            if self._free:
                index = self._free.pop()
            else:
                index = len(self._slots)
                self._slots.append(_Slot())
            slot = self._slots[index]
            slot.session = session
            return (slot.generation << _INDEX_BITS) | (index + 1)

    def get(self, handle: Any) -> Session | None:
        if not isinstance(handle, int) or isinstance(handle, bool) or handle <= 0:
            return None
        index, generation = self._unpack(handle)
        with self._lock:
            if not 0 <= index < len(self._slots):
                return None
            slot = self._slots[index]
            if slot.generation != generation:
                return None
            return slot.session

    def remove(self, handle: Any) -> Session | None:
        session = self.get(handle)
        if session is None:
            return None
        index, generation = self._unpack(handle)
        with self._lock:
            slot = self._slots[index]
            if slot.generation != generation or slot.session is None:
                return None
            slot.session = None
            slot.generation += 1
            self._free.append(index)
        return session


_table = HandleTable()
_errors = threading.local()


def _set_error(code: ErrorCode, message: str = "") -> None:
    _errors.info = ErrorInfo(code, message)


def last_error() -> ErrorInfo:
    """The error indicator of the calling thread's last API call."""
    return getattr(_errors, "info", ErrorInfo())


def _lookup(handle: Any) -> Session | None:
    session = _table.get(handle)
    if session is None:
        _set_error(ErrorCode.INVALID_HANDLE, f"Invalid or destroyed handle {handle!r}")
    return session


def create(model_path: str | Path, batch: int, mode: int,
           verbose: bool = False, profile: bool = False) -> int:
    """Create a session; returns its handle, or NULL_HANDLE on failure."""
    try:
        config = SessionConfig.from_mode(batch=batch, mode=mode,
                                         verbose=verbose, profile=profile)
        session = Session(model_path, config)
    except PredictorError as exc:
        logger.error("create failed: %s", exc)
        _set_error(exc.code, str(exc))
        return NULL_HANDLE
    _set_error(ErrorCode.OK)
    return _table.insert(session)


def predict(handle: int, quantized_input: Any, float_input: Any,
            quantize: bool) -> ErrorCode:
    """Run one inference. Exactly one of the two inputs is used, chosen by `quantize`."""
    session = _lookup(handle)
    if session is None:
        return ErrorCode.INVALID_HANDLE
    data = quantized_input if quantize else float_input
    if data is None:
        which = "quantized_input" if quantize else "float_input"
        _set_error(ErrorCode.INVALID_ARGUMENT, f"{which} is required when quantize={quantize}")
        return ErrorCode.INVALID_ARGUMENT
    try:
        session.predict(data, quantize=quantize)
    except PredictorError as exc:
        _set_error(exc.code, str(exc))
        return exc.code
    _set_error(ErrorCode.OK)
    return ErrorCode.OK


def get_predictions(handle: int) -> np.ndarray | None:
    """The session's output buffer; invalid after the next predict() or destroy()."""
    session = _lookup(handle)
    if session is None:
        return None
    try:
        predictions = session.get_predictions()
    except PredictorError as exc:
        _set_error(exc.code, str(exc))
        return None
    _set_error(ErrorCode.OK)
    return predictions


def _int_attr(handle: int, name: str) -> int:
    session = _lookup(handle)
    if session is None:
        return 0
    _set_error(ErrorCode.OK)
    return int(getattr(session, name))


def get_width(handle: int) -> int:
    return _int_attr(handle, "width")


def get_height(handle: int) -> int:
    return _int_attr(handle, "height")


def get_channels(handle: int) -> int:
    return _int_attr(handle, "channels")


def get_pred_len(handle: int) -> int:
    return _int_attr(handle, "output_length")


def destroy(handle: int) -> None:
    """Release a session. Unknown, stale and null handles are ignored."""
    session = _table.remove(handle)
    if session is not None:
        session.close()


def live_handles() -> int:
    """Number of sessions currently held by the table."""
    return len(_table)
