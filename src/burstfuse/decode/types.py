from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from .base import InvalidStateError

if TYPE_CHECKING:
    from .buffers import RawBufferPool


class ColorFilterArrangement(str, Enum):
    RGGB = "rggb"
    GRBG = "grbg"
    GBRG = "gbrg"
    BGGR = "bggr"

    def channel_indices(self) -> tuple[int, int, int, int]:
        """Quad indices of (red, green0, green1, blue) in mosaic position order."""
        layout = self.value
        red = layout.index("r")
        blue = layout.index("b")
        greens = [i for i, ch in enumerate(layout) if ch == "g"]
        return (red, greens[0], greens[1], blue)


class ScreenOrientation(str, Enum):
    PORTRAIT = "portrait"
    REVERSE_PORTRAIT = "reverse_portrait"
    LANDSCAPE = "landscape"
    REVERSE_LANDSCAPE = "reverse_landscape"


class PixelFormat(str, Enum):
    RAW10 = "raw10"
    RAW12 = "raw12"
    RAW16 = "raw16"


class Illuminant(str, Enum):
    STANDARD_A = "standard_a"
    STANDARD_B = "standard_b"
    STANDARD_C = "standard_c"
    D50 = "d50"
    D55 = "d55"
    D65 = "d65"
    D75 = "d75"

    @property
    def temperature(self) -> float:
        return _ILLUMINANT_TEMPERATURE[self]

    @property
    def dng_light_source(self) -> int:
        return _ILLUMINANT_LIGHT_SOURCE[self]


_ILLUMINANT_TEMPERATURE = {
    Illuminant.STANDARD_A: 2856.0,
    Illuminant.STANDARD_B: 4874.0,
    Illuminant.STANDARD_C: 6774.0,
    Illuminant.D50: 5003.0,
    Illuminant.D55: 5503.0,
    Illuminant.D65: 6504.0,
    Illuminant.D75: 7504.0,
}

# EXIF LightSource codes.
_ILLUMINANT_LIGHT_SOURCE = {
    Illuminant.STANDARD_A: 17,
    Illuminant.STANDARD_B: 18,
    Illuminant.STANDARD_C: 19,
    Illuminant.D55: 20,
    Illuminant.D65: 21,
    Illuminant.D75: 22,
    Illuminant.D50: 23,
}


def _matrix_or_none(value: Any) -> np.ndarray | None:
    if value is None:
        return None
    arr = np.asarray(value, dtype=np.float64)
    if arr.size == 0:
        return None
    if arr.shape != (3, 3):
        raise ValueError(f"expected 3x3 matrix, got shape {arr.shape}")
    return arr


def _matrix_to_list(value: np.ndarray | None) -> list[list[float]] | None:
    if value is None:
        return None
    return [[float(v) for v in row] for row in np.asarray(value)]


@dataclass
class RawImageMetadata:
    exposure_time_ns: int
    iso: int
    as_shot_neutral: tuple[float, float, float] = (1.0, 1.0, 1.0)
    screen_orientation: ScreenOrientation = ScreenOrientation.LANDSCAPE
    timestamp_ns: int = 0
    dynamic_black_level: tuple[float, float, float, float] | None = None
    dynamic_white_level: float | None = None
    # Per-channel gain maps in mosaic position order.
    lens_shading_map: list[np.ndarray] | None = None

    def shading_map(self) -> list[np.ndarray]:
        if not self.lens_shading_map:
            return [np.ones((1, 1), dtype=np.float32) for _ in range(4)]
        return [np.asarray(m, dtype=np.float32) for m in self.lens_shading_map]

    def to_dict(self) -> dict[str, Any]:
        return {
            "exposure_time_ns": int(self.exposure_time_ns),
            "iso": int(self.iso),
            "as_shot_neutral": [float(v) for v in self.as_shot_neutral],
            "screen_orientation": self.screen_orientation.value,
            "timestamp_ns": int(self.timestamp_ns),
            "dynamic_black_level": (
                [float(v) for v in self.dynamic_black_level] if self.dynamic_black_level is not None else None
            ),
            "dynamic_white_level": self.dynamic_white_level,
            "lens_shading_map": (
                [np.asarray(m, dtype=np.float32).tolist() for m in self.lens_shading_map]
                if self.lens_shading_map
                else None
            ),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RawImageMetadata:
        black = raw.get("dynamic_black_level")
        shading = raw.get("lens_shading_map")
        neutral = [float(v) for v in raw.get("as_shot_neutral", [1.0, 1.0, 1.0])]
        if len(neutral) != 3:
            raise ValueError("as_shot_neutral must have 3 entries")
        return cls(
            exposure_time_ns=int(raw["exposure_time_ns"]),
            iso=int(raw["iso"]),
            as_shot_neutral=(neutral[0], neutral[1], neutral[2]),
            screen_orientation=ScreenOrientation(raw.get("screen_orientation", "landscape")),
            timestamp_ns=int(raw.get("timestamp_ns", 0)),
            dynamic_black_level=tuple(float(v) for v in black) if black else None,  # type: ignore[arg-type]
            dynamic_white_level=(
                float(raw["dynamic_white_level"]) if raw.get("dynamic_white_level") is not None else None
            ),
            lens_shading_map=[np.asarray(m, dtype=np.float32) for m in shading] if shading else None,
        )


@dataclass
class RawCameraMetadata:
    sensor_arrangement: ColorFilterArrangement
    color_matrix1: np.ndarray
    color_matrix2: np.ndarray
    black_level: tuple[float, float, float, float]
    white_level: float
    forward_matrix1: np.ndarray | None = None
    forward_matrix2: np.ndarray | None = None
    calibration_matrix1: np.ndarray | None = None
    calibration_matrix2: np.ndarray | None = None
    color_illuminant1: Illuminant = Illuminant.STANDARD_A
    color_illuminant2: Illuminant = Illuminant.D65
    apertures: tuple[float, ...] = ()
    focal_lengths: tuple[float, ...] = ()
    camera_make: str = ""
    camera_model: str = ""

    def get_black_level(self, metadata: RawImageMetadata | None = None) -> np.ndarray:
        if metadata is not None and metadata.dynamic_black_level is not None:
            return np.asarray(metadata.dynamic_black_level, dtype=np.float32)
        return np.asarray(self.black_level, dtype=np.float32)

    def get_white_level(self, metadata: RawImageMetadata | None = None) -> float:
        if metadata is not None and metadata.dynamic_white_level:
            return float(metadata.dynamic_white_level)
        return float(self.white_level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sensor_arrangement": self.sensor_arrangement.value,
            "color_matrix1": _matrix_to_list(self.color_matrix1),
            "color_matrix2": _matrix_to_list(self.color_matrix2),
            "forward_matrix1": _matrix_to_list(self.forward_matrix1),
            "forward_matrix2": _matrix_to_list(self.forward_matrix2),
            "calibration_matrix1": _matrix_to_list(self.calibration_matrix1),
            "calibration_matrix2": _matrix_to_list(self.calibration_matrix2),
            "color_illuminant1": self.color_illuminant1.value,
            "color_illuminant2": self.color_illuminant2.value,
            "black_level": [float(v) for v in self.black_level],
            "white_level": float(self.white_level),
            "apertures": [float(v) for v in self.apertures],
            "focal_lengths": [float(v) for v in self.focal_lengths],
            "camera_make": self.camera_make,
            "camera_model": self.camera_model,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RawCameraMetadata:
        black = [float(v) for v in raw["black_level"]]
        if len(black) != 4:
            raise ValueError("black_level must have 4 entries")
        color1 = _matrix_or_none(raw["color_matrix1"])
        color2 = _matrix_or_none(raw.get("color_matrix2")) if raw.get("color_matrix2") else color1
        if color1 is None or color2 is None:
            raise ValueError("color_matrix1 is required")
        return cls(
            sensor_arrangement=ColorFilterArrangement(raw["sensor_arrangement"]),
            color_matrix1=color1,
            color_matrix2=color2,
            black_level=(black[0], black[1], black[2], black[3]),
            white_level=float(raw["white_level"]),
            forward_matrix1=_matrix_or_none(raw.get("forward_matrix1")),
            forward_matrix2=_matrix_or_none(raw.get("forward_matrix2")),
            calibration_matrix1=_matrix_or_none(raw.get("calibration_matrix1")),
            calibration_matrix2=_matrix_or_none(raw.get("calibration_matrix2")),
            color_illuminant1=Illuminant(raw.get("color_illuminant1", "standard_a")),
            color_illuminant2=Illuminant(raw.get("color_illuminant2", "d65")),
            apertures=tuple(float(v) for v in raw.get("apertures", [])),
            focal_lengths=tuple(float(v) for v in raw.get("focal_lengths", [])),
            camera_make=str(raw.get("camera_make", "")),
            camera_model=str(raw.get("camera_model", "")),
        )


@dataclass
class RawFrame:
    """One mosaic sensor buffer plus its capture metadata.

    The payload is borrowed from a buffer pool and handed back by ``release``;
    touching the payload afterwards raises ``InvalidStateError``.
    """

    name: str
    width: int
    height: int
    row_stride: int
    pixel_format: PixelFormat
    metadata: RawImageMetadata
    data: np.ndarray | None = field(default=None, repr=False)
    pool: RawBufferPool | None = field(default=None, repr=False, compare=False)

    @property
    def payload(self) -> np.ndarray:
        if self.data is None:
            raise InvalidStateError(f"frame {self.name} has been released")
        return self.data

    @property
    def released(self) -> bool:
        return self.data is None

    def release(self) -> None:
        if self.data is None:
            return
        if self.pool is not None:
            self.pool.release(self.data)
        self.data = None


@dataclass
class DecodedFrame:
    frame: RawFrame
    camera: RawCameraMetadata
