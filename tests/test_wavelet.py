from __future__ import annotations

import numpy as np
import pytest

from burstfuse.kernels.wavelet import estimate_noise_sigma, forward_transform, inverse_transform
from burstfuse.pipeline.estimation import WEIGHTS
from burstfuse.pipeline.spatial import WaveletDenoiser, select_weights


def test_forward_transform_band_shapes() -> None:
    plane = np.zeros((64, 128), dtype=np.float32)
    pyramid = forward_transform(plane, 4)
    assert [band.shape for band in pyramid] == [(4, 32, 64), (4, 16, 32), (4, 8, 16), (4, 4, 8)]

    with pytest.raises(ValueError):
        forward_transform(plane, 0)


def test_zero_weights_reconstruct_input() -> None:
    rng = np.random.default_rng(1)
    plane = rng.integers(0, 16384, size=(64, 64)).astype(np.float64)
    rebuilt = inverse_transform(forward_transform(plane, 4), (0.0, 0.0, 0.0, 0.0), 100.0)
    assert np.allclose(rebuilt, plane, atol=1e-6)


def test_shrinkage_reduces_noise_on_flat_plane() -> None:
    rng = np.random.default_rng(2)
    plane = 1000.0 + rng.normal(0.0, 20.0, size=(128, 128))
    pyramid = forward_transform(plane, 4)
    sigma = estimate_noise_sigma(pyramid)
    assert 10.0 < sigma < 30.0

    rebuilt = inverse_transform(pyramid, WEIGHTS[0], sigma)
    assert np.std(rebuilt) < 0.5 * np.std(plane)
    assert abs(np.mean(rebuilt) - np.mean(plane)) < 1.0


def test_select_weights_table_rows() -> None:
    assert select_weights(0, 0.01) == (0.0, 0.0, 0.0, 0.0)
    assert select_weights(1, 0.01) == WEIGHTS[5]
    assert select_weights(5, 0.01) == WEIGHTS[1]
    assert select_weights(9, 0.01) == WEIGHTS[1]
    assert select_weights(-1, 0.0001) == WEIGHTS[0]
    assert select_weights(-1, 0.05) == WEIGHTS[5]


def test_denoiser_level_zero_is_identity() -> None:
    rng = np.random.default_rng(4)
    quad = rng.integers(0, 16384, size=(4, 64, 64)).astype(np.uint16)
    result = WaveletDenoiser(levels=4, output_range=16384).denoise(quad, level=0)
    assert result.planes.dtype == np.uint16
    assert np.array_equal(result.planes, quad)
    assert result.weights == [(0.0, 0.0, 0.0, 0.0)] * 4


def test_denoiser_reports_max_normalized_noise() -> None:
    rng = np.random.default_rng(5)
    quad = np.full((4, 64, 64), 4000.0)
    quad[2] += rng.normal(0.0, 40.0, size=(64, 64))
    result = WaveletDenoiser(levels=4, output_range=16384).denoise(np.clip(quad, 0, 16384).astype(np.uint16))
    # Orthonormal Haar: the low band carries twice the plane mean.
    assert 0.003 < result.noise < 0.008
    assert np.std(result.planes[2].astype(np.float64)) < 40.0
