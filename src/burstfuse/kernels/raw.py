from __future__ import annotations

import numpy as np

from burstfuse.decode.base import DecodeError
from burstfuse.decode.types import ColorFilterArrangement, PixelFormat


def row_bytes(width: int, pixel_format: PixelFormat) -> int:
    if pixel_format is PixelFormat.RAW10:
        return width * 5 // 4
    if pixel_format is PixelFormat.RAW12:
        return width * 3 // 2
    return width * 2


def unpack_mosaic(
    data: np.ndarray,
    width: int,
    height: int,
    row_stride: int,
    pixel_format: PixelFormat,
) -> np.ndarray:
    """Unpack a MIPI packed (raw10/raw12) or little-endian raw16 payload to uint16."""
    if row_stride < row_bytes(width, pixel_format):
        raise DecodeError(f"row stride {row_stride} too small for {width} {pixel_format.value} pixels")

    buf = np.asarray(data, dtype=np.uint8).reshape(-1)
    if buf.size < row_stride * height:
        raise DecodeError(f"payload has {buf.size} bytes, expected {row_stride * height}")
    rows = buf[: row_stride * height].reshape(height, row_stride)

    if pixel_format is PixelFormat.RAW16:
        return np.ascontiguousarray(rows[:, : width * 2]).view("<u2").astype(np.uint16)

    if pixel_format is PixelFormat.RAW10:
        if width % 4:
            raise DecodeError("raw10 width must be a multiple of 4")
        packed = rows[:, : width * 5 // 4].reshape(height, width // 4, 5).astype(np.uint16)
        low = packed[..., 4]
        out = np.empty((height, width // 4, 4), dtype=np.uint16)
        for i in range(4):
            out[..., i] = (packed[..., i] << 2) | ((low >> (2 * i)) & 0x3)
        return out.reshape(height, width)

    if width % 2:
        raise DecodeError("raw12 width must be a multiple of 2")
    packed = rows[:, : width * 3 // 2].reshape(height, width // 2, 3).astype(np.uint16)
    low = packed[..., 2]
    out = np.empty((height, width // 2, 2), dtype=np.uint16)
    out[..., 0] = (packed[..., 0] << 4) | (low & 0xF)
    out[..., 1] = (packed[..., 1] << 4) | (low >> 4)
    return out.reshape(height, width)


def pack_mosaic(mosaic: np.ndarray, pixel_format: PixelFormat) -> bytes:
    m = np.asarray(mosaic, dtype=np.uint16)
    height, width = m.shape

    if pixel_format is PixelFormat.RAW16:
        return m.astype("<u2").tobytes()

    if pixel_format is PixelFormat.RAW10:
        if width % 4:
            raise ValueError("raw10 width must be a multiple of 4")
        px = (m & 0x3FF).reshape(height, width // 4, 4)
        out = np.empty((height, width // 4, 5), dtype=np.uint8)
        out[..., :4] = (px >> 2).astype(np.uint8)
        low = np.zeros((height, width // 4), dtype=np.uint16)
        for i in range(4):
            low |= (px[..., i] & 0x3) << (2 * i)
        out[..., 4] = low.astype(np.uint8)
        return out.tobytes()

    if width % 2:
        raise ValueError("raw12 width must be a multiple of 2")
    px = (m & 0xFFF).reshape(height, width // 2, 2)
    out = np.empty((height, width // 2, 3), dtype=np.uint8)
    out[..., 0] = (px[..., 0] >> 4).astype(np.uint8)
    out[..., 1] = (px[..., 1] >> 4).astype(np.uint8)
    out[..., 2] = ((px[..., 0] & 0xF) | ((px[..., 1] & 0xF) << 4)).astype(np.uint8)
    return out.tobytes()


def split_mosaic(mosaic: np.ndarray) -> np.ndarray:
    m = np.asarray(mosaic)
    h = m.shape[0] - m.shape[0] % 2
    w = m.shape[1] - m.shape[1] % 2
    m = m[:h, :w]
    return np.stack([m[0::2, 0::2], m[0::2, 1::2], m[1::2, 0::2], m[1::2, 1::2]])


def deinterleave_raw(
    data: np.ndarray,
    width: int,
    height: int,
    row_stride: int,
    pixel_format: PixelFormat,
) -> np.ndarray:
    """Payload -> (4, height/2, width/2) uint16 quad in mosaic position order."""
    return split_mosaic(unpack_mosaic(data, width, height, row_stride, pixel_format))


def build_bayer(quad: np.ndarray) -> np.ndarray:
    q = np.asarray(quad)
    if q.ndim != 3 or q.shape[0] != 4:
        raise ValueError(f"expected (4, h, w) quad, got {q.shape}")
    _, h, w = q.shape
    out = np.empty((h * 2, w * 2), dtype=q.dtype)
    out[0::2, 0::2] = q[0]
    out[0::2, 1::2] = q[1]
    out[1::2, 0::2] = q[2]
    out[1::2, 1::2] = q[3]
    return out


def quad_to_rgb(quad: np.ndarray, arrangement: ColorFilterArrangement) -> np.ndarray:
    """(4, h, w) -> (h, w, 3) float32 camera RGB, greens averaged."""
    red, green0, green1, blue = arrangement.channel_indices()
    q = np.asarray(quad, dtype=np.float32)
    return np.stack([q[red], 0.5 * (q[green0] + q[green1]), q[blue]], axis=-1)
