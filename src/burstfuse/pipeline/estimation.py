from __future__ import annotations

from dataclasses import replace
import logging
import math

import cv2
import numpy as np

from burstfuse.color import CameraProfile, create_srgb_matrix
from burstfuse.container import RawContainer
from burstfuse.decode.types import RawCameraMetadata, RawFrame, RawImageMetadata
from burstfuse.kernels import Kernels, default_kernels
from burstfuse.kernels.raw import quad_to_rgb
from burstfuse.kernels.render import apply_matrix, normalize_levels, srgb_gamma
from burstfuse.settings import PostProcessSettings

from .compositor import create_preview
from .loader import load_raw_image


logger = logging.getLogger(__name__)

DEFAULT_APERTURE = 1.8

# Wavelet attenuation per level, strongest row first.
WEIGHTS: tuple[tuple[float, float, float, float], ...] = (
    (12.0, 4.0, 2.0, 1.0),
    (8.0, 4.0, 2.0, 1.0),
    (6.0, 4.0, 1.0, 1.0),
    (4.0, 2.0, 1.0, 0.0),
    (2.0, 1.0, 0.5, 0.0),
    (1.0, 1.0, 0.0, 0.0),
)
SIGNAL_MAP: tuple[float, ...] = (0.0001, 0.0025, 0.005, 0.01, 0.03, 0.05)

SHADOW_BIAS = 6.0
HISTOGRAM_EDGE_FRACTION = 0.005


def calc_ev(camera: RawCameraMetadata, metadata: RawImageMetadata) -> float:
    aperture = camera.apertures[0] if camera.apertures else DEFAULT_APERTURE
    exposure_s = max(metadata.exposure_time_ns, 1) / 1e9
    return math.log2(aperture * aperture / exposure_s) - math.log2(max(metadata.iso, 1) / 100.0)


def get_min_ev(container: RawContainer) -> float:
    camera = container.get_camera_metadata()
    evs = [calc_ev(camera, container.get_frame(name).metadata) for name in container.get_frames()]
    if not evs:
        raise ValueError("container has no frames")
    return min(evs)


def get_shadow_key_value(ev: float) -> float:
    # 10**ev overflows past ev ~ 308; the key value has converged long before.
    ev = min(ev, 300.0)
    return 1.03 - SHADOW_BIAS / (SHADOW_BIAS + math.log10(10.0**ev + 1.0))


def _render_linear(frame: RawFrame, camera: RawCameraMetadata, downscale: int, kernels: Kernels) -> np.ndarray:
    raw = load_raw_image(frame, camera, kernels=kernels)
    step = max(1, downscale // 2)
    quad = raw.quad[:, ::step, ::step]
    normalized = normalize_levels(quad, camera.get_black_level(frame.metadata), camera.get_white_level(frame.metadata))
    rgb = quad_to_rgb(normalized, camera.sensor_arrangement)
    return apply_matrix(rgb, create_srgb_matrix(camera, frame.metadata.as_shot_neutral))


def calc_histogram(
    camera: RawCameraMetadata,
    frame: RawFrame,
    cumulative: bool = False,
    downscale: int = 4,
    kernels: Kernels | None = None,
) -> np.ndarray:
    """256-bin luma histogram of the gamma-encoded rendering, normalized to sum 1."""
    kernels = kernels or default_kernels()
    encoded = srgb_gamma(_render_linear(frame, camera, downscale, kernels))
    hist = kernels.measure_image(encoded, 256, 1.0)
    return np.cumsum(hist) if cumulative else hist


def estimate_shadows(histogram: np.ndarray, key_value: float) -> float:
    hist = np.asarray(histogram, dtype=np.float64)
    n = len(hist)
    lower = int(0.5 + n * HISTOGRAM_EDGE_FRACTION)
    upper = n - lower

    bins = np.arange(lower, upper, dtype=np.float64)
    weights = hist[lower:upper]
    total = float(np.sum(weights))
    avg_luminance = math.exp(float(np.sum(weights * np.log(1e-5 + bins / n))) / (total + 1e-5))

    return float(np.clip(2.0 ** (key_value / avg_luminance), 1.0, 32.0))


def estimate_exposure_compensation(histogram: np.ndarray, threshold: float = 0.0005) -> float:
    hist = np.asarray(histogram, dtype=np.float64)
    n = len(hist)
    total = 0.0
    for i in range(n - 1, -1, -1):
        total += hist[i]
        if total >= threshold:
            return math.log2(n / (i + 1))
    return 0.0


def estimate_black_white_point(
    frame: RawFrame,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    kernels: Kernels | None = None,
) -> tuple[float, float]:
    kernels = kernels or default_kernels()
    preview_settings = replace(settings, blacks=0.0, white_point=1.0)
    preview = create_preview(frame, camera, preview_settings, downscale=4, kernels=kernels)
    gray = cv2.cvtColor(preview, cv2.COLOR_RGB2GRAY)
    cdf = np.cumsum(kernels.measure_image(gray.astype(np.float32) / 255.0, 256, 1.0))

    max_black = int(0.07 * 256 + 0.5)
    end_bin = 1
    while end_bin < max_black:
        if cdf[end_bin + 1] - cdf[end_bin] > 0.001:
            break
        end_bin += 1
    black = max(end_bin - 1, 0) / 255.0

    max_white = int(0.75 * 256 + 0.5)
    end_bin = 254
    while end_bin >= max_white:
        if cdf[end_bin] < 0.997:
            break
        end_bin -= 1
    white = (end_bin + 1) / 256.0

    return black, white


def estimate_denoise_weights(signal: float) -> tuple[float, float, float, float]:
    """Weight row of the SIGNAL_MAP entry nearest to ``signal``."""
    index = int(np.argmin([abs(signal - s) for s in SIGNAL_MAP]))
    return WEIGHTS[index]


def measure_sharpness(frame: RawFrame, camera: RawCameraMetadata, kernels: Kernels | None = None) -> float:
    kernels = kernels or default_kernels()
    raw = load_raw_image(frame, camera, kernels=kernels)
    edges = kernels.generate_edges(raw.preview.astype(np.float32) / 255.0)
    return float(np.mean(edges))


def fill_unset_settings(
    frame: RawFrame,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    kernels: Kernels | None = None,
) -> PostProcessSettings:
    """Copy of ``settings`` with shadows and black/white point estimated where unset."""
    kernels = kernels or default_kernels()
    out = replace(settings)

    if out.shadows < 0:
        key_value = get_shadow_key_value(calc_ev(camera, frame.metadata))
        out.shadows = estimate_shadows(calc_histogram(camera, frame, kernels=kernels), key_value)
        logger.info("estimated shadows %.3f (key value %.3f)", out.shadows, key_value)

    if out.blacks < 0 or out.white_point < 0:
        black, white = estimate_black_white_point(frame, camera, out, kernels=kernels)
        if out.blacks < 0:
            out.blacks = black
        if out.white_point < 0:
            out.white_point = white
        logger.info("estimated black point %.4f white point %.4f", out.blacks, out.white_point)

    return out


def estimate_settings(
    frame: RawFrame,
    camera: RawCameraMetadata,
    kernels: Kernels | None = None,
) -> PostProcessSettings:
    """Full automatic settings for a frame, including white balance and exposure."""
    kernels = kernels or default_kernels()
    settings = PostProcessSettings()

    temperature, tint = CameraProfile(camera).temperature_from_vector(np.asarray(frame.metadata.as_shot_neutral))
    settings.temperature = float(temperature)
    settings.tint = float(tint)

    hist = calc_histogram(camera, frame, downscale=8, kernels=kernels)
    settings.shadows = estimate_shadows(hist, get_shadow_key_value(calc_ev(camera, frame.metadata)))
    settings.exposure = estimate_exposure_compensation(hist)
    settings.clipped_lows = float(hist[0])
    settings.clipped_highs = float(hist[-1])

    settings.blacks, settings.white_point = estimate_black_white_point(
        frame, camera, settings, kernels=kernels
    )
    return settings

