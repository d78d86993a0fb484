from __future__ import annotations

import numpy as np
import pytest

from burstfuse.decode.base import DecodeError
from burstfuse.decode.types import ColorFilterArrangement, PixelFormat
from burstfuse.kernels.raw import (
    build_bayer,
    deinterleave_raw,
    pack_mosaic,
    quad_to_rgb,
    row_bytes,
    unpack_mosaic,
)


def test_unpack_raw10_mipi_layout() -> None:
    # Four high bytes followed by one byte holding the 2 low bits of each pixel.
    data = np.array([0xFF, 0x00, 0x55, 0xAA, 0x93], dtype=np.uint8)
    out = unpack_mosaic(data, 4, 1, 5, PixelFormat.RAW10)
    assert out.tolist() == [[1023, 0, 341, 682]]


def test_unpack_raw12_mipi_layout() -> None:
    data = np.array([0xAB, 0xCD, 0x21], dtype=np.uint8)
    out = unpack_mosaic(data, 2, 1, 3, PixelFormat.RAW12)
    assert out.tolist() == [[0xAB1, 0xCD2]]


def test_unpack_skips_row_padding() -> None:
    rows = np.array([[1, 0, 2, 0, 0xEE, 0xEE], [3, 0, 4, 0, 0xEE, 0xEE]], dtype=np.uint8)
    out = unpack_mosaic(rows.reshape(-1), 2, 2, 6, PixelFormat.RAW16)
    assert out.tolist() == [[1, 2], [3, 4]]


def test_unpack_rejects_short_stride() -> None:
    with pytest.raises(DecodeError):
        unpack_mosaic(np.zeros(16, dtype=np.uint8), 8, 2, 8, PixelFormat.RAW10)


def test_unpack_rejects_short_payload() -> None:
    with pytest.raises(DecodeError):
        unpack_mosaic(np.zeros(10, dtype=np.uint8), 4, 2, 8, PixelFormat.RAW16)


def test_pack_matches_unpack_for_packed_formats() -> None:
    rng = np.random.default_rng(3)
    mosaic10 = rng.integers(0, 1024, size=(4, 8), dtype=np.uint16)
    mosaic12 = rng.integers(0, 4096, size=(4, 8), dtype=np.uint16)

    packed10 = np.frombuffer(pack_mosaic(mosaic10, PixelFormat.RAW10), dtype=np.uint8)
    packed12 = np.frombuffer(pack_mosaic(mosaic12, PixelFormat.RAW12), dtype=np.uint8)

    assert packed10.size == 4 * row_bytes(8, PixelFormat.RAW10)
    assert np.array_equal(unpack_mosaic(packed10, 8, 4, 10, PixelFormat.RAW10), mosaic10)
    assert np.array_equal(unpack_mosaic(packed12, 8, 4, 12, PixelFormat.RAW12), mosaic12)


def test_deinterleave_and_build_bayer_are_inverse() -> None:
    mosaic = np.arange(4 * 6, dtype=np.uint16).reshape(4, 6)
    payload = np.frombuffer(pack_mosaic(mosaic, PixelFormat.RAW16), dtype=np.uint8)

    quad = deinterleave_raw(payload, 6, 4, 12, PixelFormat.RAW16)
    assert quad.shape == (4, 2, 3)
    assert quad[0].tolist() == [[0, 2, 4], [12, 14, 16]]
    assert quad[3].tolist() == [[7, 9, 11], [19, 21, 23]]
    assert np.array_equal(build_bayer(quad), mosaic)


def test_channel_indices_per_arrangement() -> None:
    assert ColorFilterArrangement.RGGB.channel_indices() == (0, 1, 2, 3)
    assert ColorFilterArrangement.BGGR.channel_indices() == (3, 1, 2, 0)
    assert ColorFilterArrangement.GRBG.channel_indices() == (1, 0, 3, 2)
    assert ColorFilterArrangement.GBRG.channel_indices() == (2, 0, 3, 1)


def test_quad_to_rgb_averages_greens() -> None:
    quad = np.stack([np.full((1, 1), v, dtype=np.uint16) for v in (10, 20, 40, 80)])
    rgb = quad_to_rgb(quad, ColorFilterArrangement.BGGR)
    assert rgb.shape == (1, 1, 3)
    assert rgb[0, 0].tolist() == [80.0, 30.0, 10.0]
