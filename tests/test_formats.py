import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
import numpy as np
import pytest

from sensor.formats import (
    PixelFormat,
    PixelFormatError,
    format_for_array,
    layout_for,
    reinterpret,
    supported_formats,
)


def test_every_format_has_consistent_stride():
    for fmt in PixelFormat:
        layout = layout_for(fmt)
        assert layout is not None
        assert layout.byte_stride == layout.channels * layout.bit_depth // 8


def test_all_formats_supported():
    assert set(supported_formats()) == set(PixelFormat)


@pytest.mark.parametrize("tag", [-1, 11, 42, "x", None])
def test_unknown_tag_has_no_layout(tag):
    assert layout_for(tag) is None


def test_encodings():
    assert layout_for(PixelFormat.FORMAT_16U).encoding == "16UC1"
    assert layout_for(PixelFormat.FORMAT_16U2).encoding == "16UC2"
    assert layout_for(PixelFormat.FORMAT_32F3).encoding == "32FC3"
    assert layout_for(PixelFormat.FORMAT_64F).byte_stride == 8


def test_reinterpret_multi_channel_shape():
    xyz = np.arange(2 * 3 * 3, dtype=np.float32).reshape(2, 3, 3)
    out = reinterpret(xyz.tobytes(), layout_for(PixelFormat.FORMAT_32F3), 3, 2)
    assert out.shape == (2, 3, 3)
    assert np.array_equal(out, xyz)


def test_reinterpret_ignores_trailing_bytes():
    data = np.array([7, 8, 9], dtype=np.uint16).tobytes()
    out = reinterpret(data, layout_for(PixelFormat.FORMAT_16U), 2, 1)
    assert out.tolist() == [[7, 8]]


def test_reinterpret_short_buffer_raises():
    with pytest.raises(PixelFormatError):
        reinterpret(b"\x00" * 3, layout_for(PixelFormat.FORMAT_32F), 1, 1)


def test_reinterpret_zero_size():
    out = reinterpret(b"", layout_for(PixelFormat.FORMAT_8U), 0, 0)
    assert out.size == 0


def test_format_for_array():
    assert format_for_array(np.zeros((2, 2), np.float32)) == PixelFormat.FORMAT_32F
    assert format_for_array(np.zeros((2, 2, 3), np.float32)) == PixelFormat.FORMAT_32F3
    assert format_for_array(np.zeros((2, 2, 2), np.uint16)) == PixelFormat.FORMAT_16U2
    assert format_for_array(np.zeros((2, 2, 4), np.uint8)) is None
