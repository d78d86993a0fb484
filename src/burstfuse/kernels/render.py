from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import cv2
import numpy as np

from burstfuse.decode.types import ColorFilterArrangement

from .raw import quad_to_rgb


# Linear HDR layers are stored as uint16 in units of 1/HDR_LINEAR_SCALE.
HDR_LINEAR_SCALE = 4096.0
GHOST_THRESHOLD = 0.05

LUMA = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)


@dataclass(frozen=True)
class RenderParams:
    shadows: float = 1.0
    exposure: float = 0.0
    blacks: float = 0.0
    white_point: float = 1.0
    contrast: float = 0.5
    saturation: float = 1.0
    sharpen0: float = 0.0
    sharpen1: float = 0.0
    noise_threshold: float = 0.005
    hdr_gain: float = 1.0
    tonemap_sigma: float = 8.0


def srgb_gamma(linear: np.ndarray) -> np.ndarray:
    x = np.clip(linear, 0.0, 1.0)
    return np.where(x <= 0.0031308, 12.92 * x, 1.055 * np.power(x, 1.0 / 2.4) - 0.055).astype(np.float32)


def srgb_linear(encoded: np.ndarray) -> np.ndarray:
    y = np.clip(np.asarray(encoded, dtype=np.float32), 0.0, 1.0)
    return np.where(y <= 0.04045, y / 12.92, np.power((y + 0.055) / 1.055, 2.4)).astype(np.float32)


def apply_matrix(rgb: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    m = np.asarray(matrix, dtype=np.float32)
    return np.einsum("ij,...j->...i", m, rgb, optimize=True).astype(np.float32)


def normalize_levels(quad: np.ndarray, black: np.ndarray, white: float) -> np.ndarray:
    q = np.asarray(quad, dtype=np.float32)
    b = np.asarray(black, dtype=np.float32).reshape(-1, 1, 1)
    return np.clip((q - b) / (np.float32(white) - b), 0.0, None)


def apply_shading(quad: np.ndarray, shading_maps: Sequence[np.ndarray]) -> np.ndarray:
    _, h, w = quad.shape
    out = np.empty_like(quad, dtype=np.float32)
    for c in range(quad.shape[0]):
        gain = cv2.resize(np.asarray(shading_maps[c], dtype=np.float32), (w, h), interpolation=cv2.INTER_LINEAR)
        out[c] = quad[c] * gain
    return out


def _warp_planes(planes: np.ndarray, warp: np.ndarray, width: int, height: int) -> np.ndarray:
    return cv2.warpPerspective(
        planes,
        np.asarray(warp, dtype=np.float64),
        (width, height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )


def hdr_mask(
    reference: np.ndarray,
    underexposed: np.ndarray,
    warp: np.ndarray,
    black: np.ndarray,
    white: float,
    reference_scale: float,
    exposure_scale: float,
    clip_threshold: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Ghost map (0/1 float32) and 8-bit blend mask for an underexposed quad.

    ``warp`` maps underexposed pixels onto the reference grid. The blend mask
    selects clipped reference regions that are not ghosted.
    """
    ref = normalize_levels(reference, black, white) * np.float32(reference_scale)
    _, h, w = ref.shape

    under_native = np.stack([_warp_planes(np.asarray(p, dtype=np.float32), warp, w, h) for p in underexposed])
    under = normalize_levels(under_native, black, white) * np.float32(exposure_scale)

    clipped = np.any(np.asarray(reference, dtype=np.float32) >= np.float32(white - clip_threshold), axis=0)

    diff = np.mean(np.abs(ref - under), axis=0)
    diff = cv2.blur(diff, (3, 3), borderType=cv2.BORDER_REFLECT)
    ghost = (diff > GHOST_THRESHOLD) & ~clipped

    blend = clipped & ~ghost
    mask = blend.astype(np.uint8) * 255
    mask = cv2.dilate(mask, np.ones((5, 5), dtype=np.uint8))
    mask = cv2.GaussianBlur(mask, (5, 5), 0)
    return ghost.astype(np.float32), mask


def linear_image(
    underexposed: np.ndarray,
    shading_maps: Sequence[np.ndarray],
    warp: np.ndarray,
    camera_to_srgb: np.ndarray,
    black: np.ndarray,
    white: float,
    exposure_scale: float,
    arrangement: ColorFilterArrangement,
) -> np.ndarray:
    """Warped, shading-corrected linear sRGB at twice the quad resolution (uint16)."""
    q = apply_shading(normalize_levels(underexposed, black, white), shading_maps)
    _, h, w = q.shape

    rgb = cv2.resize(quad_to_rgb(q, arrangement), (w * 2, h * 2), interpolation=cv2.INTER_LINEAR)
    scale = np.diag([2.0, 2.0, 1.0])
    warp2 = scale @ np.asarray(warp, dtype=np.float64) @ np.linalg.inv(scale)
    rgb = _warp_planes(rgb, warp2, w * 2, h * 2)

    rgb = apply_matrix(rgb, camera_to_srgb) * np.float32(exposure_scale)
    return np.clip(rgb * HDR_LINEAR_SCALE + 0.5, 0, 65535).astype(np.uint16)


def _local_shadows(rgb: np.ndarray, shadows: float, sigma: float) -> np.ndarray:
    if shadows == 1.0:
        return rgb
    luma = np.clip(rgb @ LUMA, 0.0, None)
    base = cv2.GaussianBlur(luma, (0, 0), sigma, borderType=cv2.BORDER_REFLECT)
    gain = np.float32(shadows) / (1.0 + base * np.float32(shadows - 1.0))
    return rgb * gain[..., None]


def _contrast(encoded: np.ndarray, contrast: float) -> np.ndarray:
    amount = np.float32(2.0 * (min(max(contrast, 0.0), 1.0) - 0.5))
    if amount == 0.0:
        return encoded
    x = encoded
    return x + amount * x * (1.0 - x) * (2.0 * x - 1.0)


def _sharpen(encoded: np.ndarray, amount: float, sigma: float, threshold: float) -> np.ndarray:
    if amount <= 0.0:
        return encoded
    blurred = cv2.GaussianBlur(encoded, (0, 0), sigma, borderType=cv2.BORDER_REFLECT)
    detail = encoded - blurred
    detail[np.abs(detail) < threshold] = 0.0
    return encoded + np.float32(amount) * detail


def render_rgb(
    rgb: np.ndarray,
    camera_to_srgb: np.ndarray,
    params: RenderParams,
    hdr_rgb: np.ndarray | None = None,
    hdr_blend: np.ndarray | None = None,
) -> np.ndarray:
    """Camera RGB (h, w, 3) -> display-referred float32 in [0, 1]."""
    out = apply_matrix(rgb, camera_to_srgb) * np.float32(2.0 ** params.exposure)

    if hdr_rgb is not None and hdr_blend is not None:
        under = hdr_rgb.astype(np.float32) / np.float32(HDR_LINEAR_SCALE) * np.float32(params.hdr_gain)
        alpha = (hdr_blend.astype(np.float32) / 255.0)[..., None]
        out = out * (1.0 - alpha) + under * alpha

    out = _local_shadows(out, params.shadows, params.tonemap_sigma)

    span = max(params.white_point - params.blacks, 1e-3)
    out = (out - np.float32(params.blacks)) / np.float32(span)

    if params.saturation != 1.0:
        luma = (out @ LUMA)[..., None]
        out = luma + (out - luma) * np.float32(params.saturation)

    encoded = _contrast(srgb_gamma(out), params.contrast)
    encoded = _sharpen(encoded, params.sharpen0, 1.0, params.noise_threshold)
    encoded = _sharpen(encoded, params.sharpen1, 2.0, params.noise_threshold)
    return np.clip(encoded, 0.0, 1.0)


def to_uint8(encoded: np.ndarray) -> np.ndarray:
    return np.clip(encoded * 255.0 + 0.5, 0, 255).astype(np.uint8)


def postprocess(
    quad: np.ndarray,
    output_range: float,
    shading_maps: Sequence[np.ndarray],
    arrangement: ColorFilterArrangement,
    camera_to_srgb: np.ndarray,
    params: RenderParams,
    crop: tuple[int, int, int, int] = (0, 0, 0, 0),
    hdr_rgb: np.ndarray | None = None,
    hdr_blend: np.ndarray | None = None,
) -> np.ndarray:
    """Normalized quad (4, h, w) -> (2h, 2w, 3) uint8 with ``crop`` (quad units) removed."""
    q = apply_shading(np.asarray(quad, dtype=np.float32) / np.float32(output_range), shading_maps)
    _, h, w = q.shape

    rgb = cv2.resize(quad_to_rgb(q, arrangement), (w * 2, h * 2), interpolation=cv2.INTER_LINEAR)
    encoded = render_rgb(rgb, camera_to_srgb, params, hdr_rgb=hdr_rgb, hdr_blend=hdr_blend)

    left, top, right, bottom = crop
    encoded = encoded[top * 2 : h * 2 - bottom * 2, left * 2 : w * 2 - right * 2]
    return to_uint8(encoded)


def generate_preview(
    quad: np.ndarray,
    shading_maps: Sequence[np.ndarray],
    arrangement: ColorFilterArrangement,
    camera_to_srgb: np.ndarray,
    params: RenderParams,
    downscale: int,
    rotate_code: int | None = None,
) -> np.ndarray:
    """Black/white normalized quad -> 8-bit preview at 1/downscale of the sensor size."""
    q = apply_shading(np.asarray(quad, dtype=np.float32), shading_maps)
    _, h, w = q.shape
    step = max(1, downscale // 2)
    size = (max(1, w // step), max(1, h // step))

    rgb = quad_to_rgb(q, arrangement)
    if step > 1:
        rgb = cv2.resize(rgb, size, interpolation=cv2.INTER_AREA)

    out = to_uint8(render_rgb(rgb, camera_to_srgb, params))
    if rotate_code is not None:
        out = cv2.rotate(out, rotate_code)
    return out
