"""Sensor pixel formats and their destination image layouts.

Every raw image delivered by the head is tagged with a vendor pixel format.
:func:`layout_for` maps the tag to the layout of the published image
(encoding string, channels, bit depth, bytes per pixel) and
:func:`reinterpret` turns a raw byte buffer into a correctly shaped numpy
view. The set of tags is closed; unknown tags map to ``None`` so that
callers can drop just the one artifact they were building.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional

import numpy as np


class PixelFormat(IntEnum):
    FORMAT_8U = 0
    FORMAT_8S = 1
    FORMAT_16U = 2
    FORMAT_16S = 3
    FORMAT_32U = 4
    FORMAT_32S = 5
    FORMAT_32F = 6
    FORMAT_64U = 7
    FORMAT_64F = 8
    FORMAT_16U2 = 9
    FORMAT_32F3 = 10


class PixelFormatError(ValueError):
    """Raised when a buffer cannot be viewed with the requested layout."""


@dataclass(frozen=True)
class PixelLayout:
    """
    Destination layout of one pixel format.

    ``bit_depth`` is per channel, ``byte_stride`` is the size of a whole
    pixel so a row is ``width * byte_stride`` bytes.
    """

    encoding: str
    channels: int
    bit_depth: int
    byte_stride: int
    dtype: np.dtype

    def row_step(self, width: int) -> int:
        return int(width) * self.byte_stride

    def frame_size(self, width: int, height: int) -> int:
        return self.row_step(width) * int(height)


def _layout(encoding: str, channels: int, dtype: str) -> PixelLayout:
    dt = np.dtype(dtype).newbyteorder("<")
    bit_depth = dt.itemsize * 8
    return PixelLayout(encoding, channels, bit_depth, channels * dt.itemsize, dt)


_LAYOUTS: Dict[PixelFormat, PixelLayout] = {
    PixelFormat.FORMAT_8U: _layout("8UC1", 1, "u1"),
    PixelFormat.FORMAT_8S: _layout("8SC1", 1, "i1"),
    PixelFormat.FORMAT_16U: _layout("16UC1", 1, "u2"),
    PixelFormat.FORMAT_16S: _layout("16SC1", 1, "i2"),
    PixelFormat.FORMAT_32U: _layout("32UC1", 1, "u4"),
    PixelFormat.FORMAT_32S: _layout("32SC1", 1, "i4"),
    PixelFormat.FORMAT_32F: _layout("32FC1", 1, "f4"),
    PixelFormat.FORMAT_64U: _layout("64UC1", 1, "u8"),
    PixelFormat.FORMAT_64F: _layout("64FC1", 1, "f8"),
    PixelFormat.FORMAT_16U2: _layout("16UC2", 2, "u2"),
    PixelFormat.FORMAT_32F3: _layout("32FC3", 3, "f4"),
}

EIGHT_BIT_FORMATS = frozenset({PixelFormat.FORMAT_8U, PixelFormat.FORMAT_8S})


def to_format(tag: int) -> Optional[PixelFormat]:
    try:
        return PixelFormat(int(tag))
    except (TypeError, ValueError):
        return None


def layout_for(tag: int) -> Optional[PixelLayout]:
    """Return the layout of ``tag`` or ``None`` if the tag is unsupported."""
    fmt = to_format(tag)
    if fmt is None:
        return None
    return _LAYOUTS.get(fmt)


def supported_formats() -> tuple[PixelFormat, ...]:
    return tuple(_LAYOUTS)


def reinterpret(
    data: bytes | bytearray | memoryview | np.ndarray,
    layout: PixelLayout,
    width: int,
    height: int,
) -> np.ndarray:
    """
    View the first ``width * height`` pixels of ``data`` with ``layout``.

    Returns ``(height, width)`` for single channel layouts and
    ``(height, width, channels)`` otherwise. Trailing bytes are ignored.
    """
    if width < 0 or height < 0:
        raise PixelFormatError(f"Negative geometry {width}x{height}")
    buf = data.tobytes() if isinstance(data, np.ndarray) else bytes(data)
    needed = layout.frame_size(width, height)
    if len(buf) < needed:
        raise PixelFormatError(
            f"Buffer holds {len(buf)} bytes, {layout.encoding} {width}x{height} "
            f"needs {needed}"
        )
    shape = (height, width) if layout.channels == 1 else (height, width, layout.channels)
    if needed == 0:
        return np.zeros(shape, dtype=layout.dtype)
    flat = np.frombuffer(buf, dtype=layout.dtype, count=needed // layout.dtype.itemsize)
    return flat.reshape(shape)


def format_for_array(arr: np.ndarray) -> Optional[PixelFormat]:
    """Pixel format matching ``arr``'s dtype and channel count, if any."""
    channels = 1 if arr.ndim < 3 else arr.shape[2]
    dt = np.dtype(arr.dtype).newbyteorder("<")
    for fmt, layout in _LAYOUTS.items():
        if layout.channels == channels and layout.dtype == dt:
            return fmt
    return None
