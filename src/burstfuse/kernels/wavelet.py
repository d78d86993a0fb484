from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pywt


WAVELET = "haar"
MODE = "periodization"


def forward_transform(plane: np.ndarray, levels: int) -> list[np.ndarray]:
    """Decompose ``plane`` into ``levels`` bands of stacked (low, H, V, D) sub-bands.

    Band ``i`` has half the resolution of band ``i - 1``; band 0 is half the input.
    """
    if levels < 1:
        raise ValueError("levels must be >= 1")

    low = np.asarray(plane, dtype=np.float64)
    pyramid: list[np.ndarray] = []
    for _ in range(levels):
        low, (horizontal, vertical, diagonal) = pywt.dwt2(low, WAVELET, mode=MODE)
        pyramid.append(np.stack([low, horizontal, vertical, diagonal]))
    return pyramid


def _shrink(band: np.ndarray, threshold: float) -> np.ndarray:
    if threshold <= 0.0:
        return band
    energy = band * band
    gain = np.divide(energy, energy + threshold * threshold, out=np.zeros_like(band), where=energy > 0)
    return band * gain


def inverse_transform(
    pyramid: Sequence[np.ndarray],
    weights: Sequence[float],
    noise_sigma: float,
) -> np.ndarray:
    """Rebuild the plane, attenuating level ``i`` detail with ``weights[i] * noise_sigma``.

    A zero weight leaves that level untouched.
    """
    low = pyramid[-1][0]
    for i in range(len(pyramid) - 1, -1, -1):
        band = pyramid[i]
        low = low[: band.shape[1], : band.shape[2]]
        weight = float(weights[i]) if i < len(weights) else 0.0
        threshold = weight * noise_sigma
        details = tuple(_shrink(band[k], threshold) for k in (1, 2, 3))
        low = pywt.idwt2((low, details), WAVELET, mode=MODE)
    return low


def estimate_noise_sigma(pyramid: Sequence[np.ndarray]) -> float:
    """Median absolute deviation of the finest diagonal band."""
    return float(np.median(np.abs(pyramid[0][3])) / 0.6745)
