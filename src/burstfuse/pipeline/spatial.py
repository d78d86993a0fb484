from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from burstfuse.kernels import Kernels, default_kernels
from burstfuse.kernels.wavelet import estimate_noise_sigma

from .estimation import WEIGHTS, estimate_denoise_weights


logger = logging.getLogger(__name__)


def select_weights(level: int, signal: float) -> tuple[float, ...]:
    """Attenuation per wavelet level: ``level < 0`` auto, ``0`` off, ``1..5`` fixed table rows."""
    if level < 0:
        return estimate_denoise_weights(signal)
    if level == 0:
        return (0.0,) * len(WEIGHTS[0])
    return WEIGHTS[len(WEIGHTS) - min(level, 5)]


@dataclass
class DenoiseResult:
    planes: np.ndarray  # (4, h, w) uint16
    noise: float  # max normalized noise over channels
    weights: list[tuple[float, ...]]


class WaveletDenoiser:
    def __init__(self, levels: int = 4, output_range: int = 65535, kernels: Kernels | None = None) -> None:
        self.levels = levels
        self.output_range = output_range
        self.kernels = kernels or default_kernels()

    def denoise_plane(self, plane: np.ndarray, level: int) -> tuple[np.ndarray, float, tuple[float, ...]]:
        pyramid = self.kernels.forward_transform(plane, self.levels)
        sigma = estimate_noise_sigma(pyramid)
        normalized_noise = sigma / (1e-5 + float(np.mean(pyramid[0][0])))
        weights = select_weights(level, normalized_noise)

        rebuilt = self.kernels.inverse_transform(pyramid, weights, sigma)
        rebuilt = rebuilt[: plane.shape[0], : plane.shape[1]]
        out = np.clip(np.rint(rebuilt), 0, self.output_range).astype(np.uint16)
        return out, normalized_noise, weights

    def denoise(self, quad: np.ndarray, level: int = -1) -> DenoiseResult:
        planes = np.empty_like(quad, dtype=np.uint16)
        noises: list[float] = []
        weights: list[tuple[float, ...]] = []
        for c in range(quad.shape[0]):
            planes[c], noise, w = self.denoise_plane(quad[c], level)
            noises.append(noise)
            weights.append(w)
            logger.debug("channel %d noise %.5f weights %s", c, noise, w)
        return DenoiseResult(planes=planes, noise=max(noises), weights=weights)
