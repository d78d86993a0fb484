from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import TYPE_CHECKING

import cv2
import numpy as np

from burstfuse.color import create_srgb_matrix
from burstfuse.decode.types import RawCameraMetadata, RawFrame, RawImageMetadata, ScreenOrientation
from burstfuse.kernels import Kernels, default_kernels
from burstfuse.kernels.render import RenderParams, normalize_levels
from burstfuse.settings import PostProcessSettings

from .loader import Padding, load_raw_image

if TYPE_CHECKING:
    from .hdr import HdrLayer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviewVariant:
    downscale: int
    rotate_code: int | None
    sharpen: bool


_ROTATION: dict[ScreenOrientation, int | None] = {
    ScreenOrientation.LANDSCAPE: None,
    ScreenOrientation.PORTRAIT: cv2.ROTATE_90_CLOCKWISE,
    ScreenOrientation.REVERSE_PORTRAIT: cv2.ROTATE_90_COUNTERCLOCKWISE,
    ScreenOrientation.REVERSE_LANDSCAPE: cv2.ROTATE_180,
}

PREVIEW_VARIANTS: dict[tuple[int, ScreenOrientation], PreviewVariant] = {
    (downscale, orientation): PreviewVariant(downscale, rotate, sharpen=downscale == 2)
    for downscale in (2, 4, 8)
    for orientation, rotate in _ROTATION.items()
}


def sharpen_threshold(noise: float) -> float:
    return float(np.clip(noise / 2.0, 0.005, 0.015))


def render_params(settings: PostProcessSettings, noise_threshold: float = 0.005, hdr_gain: float = 1.0) -> RenderParams:
    """Settings -> kernel parameters; fields still unset render neutrally."""
    return RenderParams(
        shadows=settings.shadows if settings.shadows > 0 else 1.0,
        exposure=settings.exposure,
        blacks=settings.blacks if settings.blacks >= 0 else 0.0,
        white_point=settings.white_point if settings.white_point > 0 else 1.0,
        contrast=settings.contrast,
        saturation=settings.saturation,
        sharpen0=settings.sharpen0,
        sharpen1=settings.sharpen1,
        noise_threshold=noise_threshold,
        hdr_gain=hdr_gain,
    )


def create_preview(
    frame: RawFrame,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    downscale: int = 4,
    kernels: Kernels | None = None,
) -> np.ndarray:
    """Fast (h, w, 3) uint8 rendering of a single frame."""
    kernels = kernels or default_kernels()
    try:
        variant = PREVIEW_VARIANTS[(downscale, frame.metadata.screen_orientation)]
    except KeyError as exc:
        raise ValueError(f"unsupported preview downscale {downscale}") from exc

    raw = load_raw_image(frame, camera, kernels=kernels)
    quad = normalize_levels(raw.quad, camera.get_black_level(frame.metadata), camera.get_white_level(frame.metadata))
    camera_to_srgb = create_srgb_matrix(camera, frame.metadata.as_shot_neutral, settings.temperature, settings.tint)

    params = render_params(settings)
    if not variant.sharpen:
        params = replace(params, sharpen0=0.0, sharpen1=0.0)

    return kernels.generate_preview(
        quad,
        frame.metadata.shading_map(),
        camera.sensor_arrangement,
        camera_to_srgb,
        params,
        variant.downscale,
        variant.rotate_code,
    )


def post_process(
    quad: np.ndarray,
    pad: Padding,
    noise: float,
    metadata: RawImageMetadata,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    output_range: int,
    hdr: HdrLayer | None = None,
    kernels: Kernels | None = None,
) -> np.ndarray:
    """Fused, denoised quad -> final (H, W, 3) uint8 image without edge padding."""
    kernels = kernels or default_kernels()
    camera_to_srgb = create_srgb_matrix(camera, metadata.as_shot_neutral, settings.temperature, settings.tint)
    params = render_params(
        settings,
        noise_threshold=sharpen_threshold(noise),
        hdr_gain=hdr.gain if hdr is not None else 1.0,
    )
    logger.debug("render params %s", params)

    return kernels.postprocess(
        quad,
        float(output_range),
        metadata.shading_map(),
        camera.sensor_arrangement,
        camera_to_srgb,
        params,
        pad.as_tuple(),
        hdr.image if hdr is not None else None,
        hdr.mask if hdr is not None else None,
    )
