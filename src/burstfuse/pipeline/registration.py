from __future__ import annotations

from dataclasses import dataclass
import logging

import cv2
import numpy as np


logger = logging.getLogger(__name__)

# Carries a homography estimated at one pyramid level to the next finer level.
LEVEL_SCALE = np.array([[1.0, 1.0, 2.0], [1.0, 1.0, 2.0], [0.5, 0.5, 1.0]], dtype=np.float32)
MIN_LEVEL_SIZE = 16


@dataclass
class RegistrationResult:
    homography: np.ndarray | None
    mean_flow_x: float = 0.0
    mean_flow_y: float = 0.0

    @property
    def matched(self) -> bool:
        return self.homography is not None


@dataclass
class FlowField:
    flow: np.ndarray  # (h, w, 2) float32, reference -> image
    mean_x: float
    mean_y: float


def _pyramid(image: np.ndarray, levels: int) -> list[np.ndarray]:
    out = [image]
    for _ in range(levels):
        out.append(cv2.pyrDown(out[-1]))
    return out


def _usable_levels(shape: tuple[int, ...], requested: int) -> int:
    levels = requested
    while levels > 0 and min(shape[0], shape[1]) >> levels < MIN_LEVEL_SIZE:
        levels -= 1
    return levels


def _mean_displacement(homography: np.ndarray, width: int, height: int) -> tuple[float, float]:
    xs, ys = np.meshgrid(np.linspace(0, width - 1, 16), np.linspace(0, height - 1, 16))
    points = np.stack([xs.ravel(), ys.ravel(), np.ones(xs.size)])
    mapped = np.asarray(homography, dtype=np.float64) @ points
    mapped = mapped[:2] / mapped[2]
    return float(np.mean(mapped[0] - points[0])), float(np.mean(mapped[1] - points[1]))


def register_image(
    reference: np.ndarray,
    image: np.ndarray,
    levels: int = 5,
    iterations: int = 50,
    epsilon: float = 0.001,
) -> RegistrationResult:
    """Homography mapping reference coordinates onto ``image`` (ECC, coarse to fine).

    Solver failure yields ``homography=None``; callers must not read that as identity.
    """
    if reference.shape != image.shape:
        raise ValueError(f"preview shapes differ: {reference.shape} vs {image.shape}")

    levels = _usable_levels(reference.shape, levels)
    ref_pyramid = _pyramid(reference, levels)
    cur_pyramid = _pyramid(image, levels)

    warp = np.eye(3, dtype=np.float32)
    criteria = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, iterations, epsilon)

    for i in range(levels, -1, -1):
        try:
            _, warp = cv2.findTransformECC(
                ref_pyramid[i], cur_pyramid[i], warp, cv2.MOTION_HOMOGRAPHY, criteria, None, 1
            )
        except cv2.error as exc:
            logger.info("registration failed at pyramid level %d: %s", i, exc)
            return RegistrationResult(homography=None)
        if i > 0:
            warp = warp * LEVEL_SCALE

    height, width = reference.shape[:2]
    mean_x, mean_y = _mean_displacement(warp, width, height)
    return RegistrationResult(homography=warp, mean_flow_x=mean_x, mean_flow_y=mean_y)


def estimate_flow(reference: np.ndarray, image: np.ndarray, patch_size: int) -> FlowField:
    """Dense DIS optical flow from ``reference`` to ``image``.

    Non-finite vectors are zeroed so the caller sees them as no motion.
    """
    dis = cv2.DISOpticalFlow_create(cv2.DISOPTICAL_FLOW_PRESET_ULTRAFAST)
    dis.setPatchSize(patch_size)
    dis.setPatchStride(patch_size // 2)
    dis.setGradientDescentIterations(16)
    dis.setUseMeanNormalization(True)
    dis.setUseSpatialPropagation(True)

    flow = dis.calc(reference, image, None)
    flow = np.nan_to_num(flow, nan=0.0, posinf=0.0, neginf=0.0).astype(np.float32)
    mean = cv2.mean(flow)
    return FlowField(flow=flow, mean_x=float(mean[0]), mean_y=float(mean[1]))
