from __future__ import annotations

import logging

import numpy as np

from burstfuse.decode.base import InvalidStateError
from burstfuse.decode.types import RawCameraMetadata

from .primaries import D50_WHITE, bradford_adaptation, matrix_pcs_to_srgb, xy_to_xyz, xyz_to_xy
from .temperature import temperature_to_xy, xy_to_temperature


logger = logging.getLogger(__name__)


class CameraProfile:
    """Two-illuminant camera calibration interpolated by correlated color temperature."""

    def __init__(self, camera: RawCameraMetadata) -> None:
        self.camera = camera
        self._temp1 = camera.color_illuminant1.temperature
        self._temp2 = camera.color_illuminant2.temperature

    def _weight(self, temperature: float) -> float:
        inv1 = 1.0 / self._temp1
        inv2 = 1.0 / self._temp2
        if abs(inv1 - inv2) < 1e-12:
            return 1.0
        g = (1.0 / temperature - inv2) / (inv1 - inv2)
        return float(np.clip(g, 0.0, 1.0))

    @staticmethod
    def _mix(a: np.ndarray | None, b: np.ndarray | None, g: float) -> np.ndarray | None:
        if a is None or b is None:
            return a if a is not None else b
        return g * np.asarray(a, dtype=np.float64) + (1.0 - g) * np.asarray(b, dtype=np.float64)

    def _calibration(self, g: float) -> np.ndarray:
        cc = self._mix(self.camera.calibration_matrix1, self.camera.calibration_matrix2, g)
        return np.eye(3) if cc is None else cc

    def xyz_to_camera(self, temperature: float) -> np.ndarray:
        g = self._weight(temperature)
        color = self._mix(self.camera.color_matrix1, self.camera.color_matrix2, g)
        if color is None:
            raise InvalidStateError("Camera has no colour matrix")
        return self._calibration(g) @ color

    def neutral_to_xy(self, neutral: np.ndarray) -> np.ndarray:
        xy = D50_WHITE.copy()
        for _ in range(30):
            temperature, _tint = xy_to_temperature(xy)
            xyz = np.linalg.solve(self.xyz_to_camera(temperature), np.asarray(neutral, dtype=np.float64))
            next_xy = xyz_to_xy(xyz)
            if np.max(np.abs(next_xy - xy)) < 1e-7:
                return next_xy
            xy = 0.5 * (xy + next_xy)
        return xy

    def temperature_from_vector(self, neutral: np.ndarray) -> tuple[float, float]:
        return xy_to_temperature(self.neutral_to_xy(neutral))

    def vector_from_temperature(self, temperature: float, tint: float) -> np.ndarray:
        xyz = xy_to_xyz(temperature_to_xy(temperature, tint))
        neutral = self.xyz_to_camera(temperature) @ xyz
        return neutral / np.max(neutral)

    def camera_to_pcs(self, neutral: np.ndarray) -> np.ndarray:
        """White-balanced camera RGB -> D50 XYZ; the neutral maps to the D50 white."""
        neutral = np.asarray(neutral, dtype=np.float64)
        white_xy = self.neutral_to_xy(neutral)
        temperature, _tint = xy_to_temperature(white_xy)
        g = self._weight(temperature)

        forward = self._mix(self.camera.forward_matrix1, self.camera.forward_matrix2, g)
        if forward is not None:
            calibration = self._calibration(g)
            reference_neutral = np.linalg.solve(calibration, neutral)
            m = forward @ np.diag(1.0 / reference_neutral) @ np.linalg.inv(calibration) @ np.diag(neutral)
        else:
            m = bradford_adaptation(white_xy, D50_WHITE) @ np.linalg.inv(self.xyz_to_camera(temperature))
            m = m @ np.diag(neutral)

        # Scale so the white-balanced neutral lands on the D50 white with Y = 1.
        white = m @ np.ones(3)
        target = xy_to_xyz(D50_WHITE)
        return m * (target[1] / white[1])


def create_srgb_matrix(
    camera: RawCameraMetadata,
    as_shot_neutral: tuple[float, float, float],
    temperature: float = -1.0,
    tint: float = -1.0,
) -> np.ndarray:
    """Camera RGB -> linear sRGB, white balance included.

    Explicit temperature/tint win when either is positive; otherwise the as-shot
    neutral is used.
    """
    profile = CameraProfile(camera)

    if temperature > 0 or tint > 0:
        t = temperature if temperature > 0 else profile.temperature_from_vector(np.asarray(as_shot_neutral))[0]
        neutral = profile.vector_from_temperature(t, max(tint, 0.0))
    else:
        neutral = np.asarray(as_shot_neutral, dtype=np.float64)
        peak = float(np.max(neutral))
        if peak <= 0.0:
            raise InvalidStateError("Camera white balance vector is zero")
        neutral = neutral / peak

    if np.any(neutral <= 0.0):
        raise InvalidStateError(f"invalid white balance vector {neutral.tolist()}")

    camera_to_srgb = matrix_pcs_to_srgb() @ profile.camera_to_pcs(neutral) @ np.diag(1.0 / neutral)
    logger.debug("camera to sRGB matrix %s", camera_to_srgb.round(4).tolist())
    return camera_to_srgb.astype(np.float32)
