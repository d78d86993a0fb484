from __future__ import annotations

from enum import Enum

import cv2
import numpy as np


class FusionKernel(int, Enum):
    """Spatial support of the difference window used to accept or reject motion."""

    K3X3 = 3
    K5X5 = 5
    K7X7 = 7


def warp_by_flow(plane: np.ndarray, flow: np.ndarray) -> np.ndarray:
    h, w = plane.shape
    grid_x, grid_y = np.meshgrid(np.arange(w, dtype=np.float32), np.arange(h, dtype=np.float32))
    map_x = grid_x + flow[..., 0]
    map_y = grid_y + flow[..., 1]
    return cv2.remap(plane, map_x, map_y, interpolation=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE)


def fuse_denoise(
    reference: np.ndarray,
    current: np.ndarray,
    flow: np.ndarray,
    accumulator: np.ndarray,
    noise_threshold: np.ndarray,
    spatial_weight: float,
    motion_threshold: float,
    kernel: FusionKernel,
) -> None:
    """Fold one motion-compensated frame into ``accumulator`` in place.

    Each pixel contributes ``a * warped + (1 - a) * reference`` where ``a`` falls
    off with the local mean difference measured in units of the channel's noise
    threshold. Pixels that move too much fall back to the reference value.
    """
    ref = np.asarray(reference, dtype=np.float32)
    cur = np.asarray(current, dtype=np.float32)
    flow = np.asarray(flow, dtype=np.float32)
    size = (int(kernel), int(kernel))

    for c in range(ref.shape[0]):
        warped = warp_by_flow(cur[c], flow)
        diff = cv2.blur(np.abs(warped - ref[c]), size, borderType=cv2.BORDER_REFLECT)
        threshold = max(float(noise_threshold[c]), 1e-3)
        alpha = np.clip(1.0 - spatial_weight * diff / (threshold * motion_threshold), 0.0, 1.0)
        accumulator[c] += alpha * warped + (1.0 - alpha) * ref[c]
