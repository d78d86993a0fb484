from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from burstfuse.decode.types import RawCameraMetadata, RawFrame, RawImageMetadata
from burstfuse.kernels import Kernels, default_kernels
from burstfuse.kernels.raw import quad_to_rgb
from burstfuse.kernels.render import LUMA, normalize_levels


@dataclass(frozen=True)
class Padding:
    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)

    def crop(self, planes: np.ndarray) -> np.ndarray:
        """Remove the padding from the last two axes."""
        h, w = planes.shape[-2:]
        return planes[..., self.top : h - self.bottom, self.left : w - self.right]


@dataclass
class RawData:
    quad: np.ndarray  # (4, h, w) uint16 at native sensor levels
    preview: np.ndarray  # (h, w) uint8
    metadata: RawImageMetadata
    pad: Padding


def extend_edges(quad: np.ndarray, multiple: int) -> tuple[np.ndarray, Padding]:
    """Edge-replicate each channel up to a multiple of ``multiple``, split evenly per side."""
    _, h, w = quad.shape
    extra_h = -h % multiple
    extra_w = -w % multiple
    pad = Padding(left=extra_w // 2, top=extra_h // 2, right=extra_w - extra_w // 2, bottom=extra_h - extra_h // 2)
    if extra_h == 0 and extra_w == 0:
        return quad, pad
    padded = np.pad(quad, ((0, 0), (pad.top, pad.bottom), (pad.left, pad.right)), mode="edge")
    return padded, pad


def normalize_quad(quad: np.ndarray, black: np.ndarray, white: float, output_range: int) -> np.ndarray:
    """Native levels -> [0, output_range] uint16."""
    q = np.asarray(quad, dtype=np.float32)
    b = np.asarray(black, dtype=np.float32).reshape(-1, 1, 1)
    scale = np.float32(output_range) / (np.float32(white) - b)
    return np.clip((q - b) * scale + 0.5, 0, output_range).astype(np.uint16)


def preview_plane(quad: np.ndarray, camera: RawCameraMetadata, metadata: RawImageMetadata, scale: float) -> np.ndarray:
    """8-bit gamma 2.2 luma of the quad, used for registration."""
    normalized = normalize_levels(quad, camera.get_black_level(metadata), camera.get_white_level(metadata))
    luma = quad_to_rgb(normalized, camera.sensor_arrangement) @ LUMA
    luma = np.clip(luma * np.float32(scale), 0.0, 1.0)
    return (np.power(luma, 1.0 / 2.2) * 255.0 + 0.5).astype(np.uint8)


def load_raw_image(
    frame: RawFrame,
    camera: RawCameraMetadata,
    extend: bool = False,
    scale_preview: float = 1.0,
    extend_edge_amount: int = 6,
    kernels: Kernels | None = None,
) -> RawData:
    kernels = kernels or default_kernels()
    quad = kernels.deinterleave_raw(frame.payload, frame.width, frame.height, frame.row_stride, frame.pixel_format)

    pad = Padding()
    if extend:
        quad, pad = extend_edges(quad, 2**extend_edge_amount)

    preview = preview_plane(quad, camera, frame.metadata, scale_preview)
    return RawData(quad=quad, preview=preview, metadata=frame.metadata, pad=pad)
