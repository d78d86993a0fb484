from __future__ import annotations

from dataclasses import dataclass
import logging

import cv2
import numpy as np

from burstfuse.color import create_srgb_matrix
from burstfuse.config import PipelineConfig
from burstfuse.decode.types import RawCameraMetadata, RawFrame
from burstfuse.kernels import Kernels, default_kernels
from burstfuse.settings import PostProcessSettings

from .estimation import calc_ev
from .loader import load_raw_image
from .registration import register_image


logger = logging.getLogger(__name__)

HEADROOM_BINS = 1024
HEADROOM_THRESHOLD = 1e-5


@dataclass
class HdrLayer:
    exposure_scale: float
    gain: float
    error: float
    image: np.ndarray  # (2h, 2w, 3) uint16 linear sRGB
    mask: np.ndarray  # (2h, 2w) uint8 blend weight


def interior_mean(ghost: np.ndarray, margin: int) -> float:
    h, w = ghost.shape
    if h > 2 * margin and w > 2 * margin:
        ghost = ghost[margin : h - margin, margin : w - margin]
    return float(np.mean(ghost))


def estimate_headroom_gain(image: np.ndarray) -> float:
    """Gain that would stretch the brightest populated histogram bin to full range."""
    peak = 0
    for c in range(image.shape[-1]):
        hist, _ = np.histogram(image[..., c], bins=HEADROOM_BINS, range=(0, 65536))
        hist = hist / max(1, image[..., c].size)
        populated = np.nonzero(hist > HEADROOM_THRESHOLD)[0]
        if populated.size:
            peak = max(peak, int(populated[-1]))
    return HEADROOM_BINS / float(peak + 1)


def prepare_hdr(
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    reference: RawFrame,
    underexposed: RawFrame,
    config: PipelineConfig,
    kernels: Kernels | None = None,
) -> HdrLayer | None:
    """Linear layer of ``underexposed`` aligned to ``reference``; ``None`` when rejected."""
    kernels = kernels or default_kernels()

    ref_ev = calc_ev(camera, reference.metadata)
    under_ev = calc_ev(camera, underexposed.metadata)
    exposure_scale = float(2.0 ** abs(under_ev - ref_ev))

    ref = load_raw_image(reference, camera, True, 1.0, config.extend_edge_amount, kernels)
    under = load_raw_image(underexposed, camera, True, exposure_scale, config.extend_edge_amount, kernels)
    if ref.quad.shape != under.quad.shape:
        logger.info("hdr rejected: frame shapes differ %s vs %s", ref.quad.shape, under.quad.shape)
        return None

    registration = register_image(
        ref.preview,
        under.preview,
        levels=config.registration_levels,
        iterations=config.registration_iterations,
        epsilon=config.registration_epsilon,
    )
    if not registration.matched:
        logger.info("hdr rejected: registration failed")
        return None

    try:
        warp = np.linalg.inv(registration.homography).astype(np.float32)
    except np.linalg.LinAlgError:
        logger.info("hdr rejected: singular homography")
        return None

    black = camera.get_black_level(reference.metadata)
    white = camera.get_white_level(reference.metadata)
    ghost, mask = kernels.hdr_mask(
        ref.quad, under.quad, warp, black, white, 1.0, exposure_scale, config.hdr_clip_threshold
    )

    error = interior_mean(ghost, config.hdr_interior_margin)
    if error > config.max_hdr_error:
        logger.info("hdr rejected: error %.6f > %.6f", error, config.max_hdr_error)
        return None

    _, h, w = under.quad.shape
    mask = cv2.resize(mask, (w * 2, h * 2), interpolation=cv2.INTER_LINEAR)

    camera_to_srgb = create_srgb_matrix(
        camera, underexposed.metadata.as_shot_neutral, settings.temperature, settings.tint
    )
    image = kernels.linear_image(
        under.quad,
        underexposed.metadata.shading_map(),
        warp,
        camera_to_srgb,
        black,
        white,
        exposure_scale,
        camera.sensor_arrangement,
    )

    headroom = estimate_headroom_gain(image)
    gain = headroom if config.hdr_headroom_gain else 1.0
    logger.info(
        "hdr accepted: scale=%.2f error=%.6f headroom=%.3f gain=%.3f", exposure_scale, error, headroom, gain
    )
    return HdrLayer(exposure_scale=exposure_scale, gain=gain, error=error, image=image, mask=mask)
