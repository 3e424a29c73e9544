"""Input marshalling: caller buffer -> plan input tensor.

The caller supplies NHWC data (batch outermost, channel innermost),
exactly batch * height * width * channels elements, either as floats
or as pre-quantized integers. Two paths are accepted:

    float path      plan input FLOAT32, quantize=False: copy as float32
    quantized path  plan input UINT8/INT8, quantize=True: narrow each
                    integer element to 8 bits, no rescaling

The caller's quantize flag must match the plan's input type; any other
combination is a configuration error, not something to convert around.
Narrowing wraps like a C cast (256 -> 0 for uint8, 200 -> -56 for int8).
"""

from typing import Any

import numpy as np

from .errors import InputTypeMismatchError, ShapeError, UnsupportedTypeError
from .ir import Dim, ElementType


def nhwc_dims(shape: tuple[Dim, ...]) -> tuple[Dim, Dim, Dim, Dim]:
    """Split a rank-4 input shape into (batch, height, width, channels).

    Canonical axis order: dims[1] is height, dims[2] is width, dims[3] is
    channels, matching the NHWC layout the caller's buffer uses.
    """
    if len(shape) != 4:
        raise ShapeError(
            f"Input tensor must have rank 4 (batch, height, width, channels), "
            f"got rank {len(shape)} {tuple(shape)}"
        )
    batch, height, width, channels = shape
    return batch, height, width, channels


def marshal(data: Any, shape: tuple[Dim, ...], element_type: ElementType | None,
            quantize: bool, out: np.ndarray | None = None) -> np.ndarray:
    """Convert `data` to the plan's input layout and element type.

    Args:
        data: Flat or shaped array-like with batch*H*W*C elements.
        shape: Concrete input shape (batch, height, width, channels).
        element_type: The plan's declared input element type
            (None if the runtime reported an unsupported type).
        quantize: Caller intent: True for pre-quantized integer input.
        out: Destination buffer (the plan's input tensor memory). A new
            array is returned when omitted.

    Returns:
        The marshalled tensor (`out` when given).
    """
    batch, height, width, channels = nhwc_dims(shape)
    if not all(isinstance(d, int) and d > 0 for d in (batch, height, width, channels)):
        raise ShapeError(f"Input shape {tuple(shape)} is not fully static")

    if element_type is None:
        raise UnsupportedTypeError("Input tensor element type is not float32, uint8 or int8")

    if element_type is ElementType.FLOAT32:
        if quantize:
            raise InputTypeMismatchError(
                "Quantized input given but the plan expects float32 input"
            )
    elif element_type in (ElementType.UINT8, ElementType.INT8):
        if not quantize:
            raise InputTypeMismatchError(
                f"Float input given but the plan expects quantized "
                f"{element_type.name.lower()} input"
            )

    try:
        flat = np.asarray(data).reshape(-1)
    except (ValueError, TypeError) as exc:
        raise ShapeError(f"Input is not a rectangular array: {exc}") from exc
    expected = batch * height * width * channels
    if flat.size != expected:
        raise ShapeError(
            f"Input has {flat.size} elements, expected {expected} "
            f"({batch}x{height}x{width}x{channels})"
        )

    if quantize:
        if flat.dtype.kind not in "iub":
            raise InputTypeMismatchError(
                f"Quantized input must be integer data, got {flat.dtype}"
            )
        values = flat.astype(element_type.dtype, casting="unsafe")
    else:
        if flat.dtype.kind not in "iubf":
            raise InputTypeMismatchError(
                f"Float input must be numeric data, got {flat.dtype}"
            )
        values = flat.astype(np.float32)

    values = values.reshape(batch, height, width, channels)
    if out is None:
        return values
    if out.shape != values.shape or out.dtype != values.dtype:
        raise ShapeError(
            f"Input buffer is {out.shape} {out.dtype}, "
            f"marshalled data is {values.shape} {values.dtype}"
        )
    np.copyto(out, values)
    return out
