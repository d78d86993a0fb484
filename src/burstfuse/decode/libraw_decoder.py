from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from burstfuse.kernels.raw import pack_mosaic

from .base import DecodeError, MissingDependencyError, UnsupportedFormatError
from .buffers import InMemoryBufferPool, RawBufferPool
from .exif_metadata import extract_exif_metadata
from .types import (
    ColorFilterArrangement,
    DecodedFrame,
    Illuminant,
    PixelFormat,
    RawCameraMetadata,
    RawFrame,
    RawImageMetadata,
)


try:
    import rawpy  # type: ignore
except Exception:  # pragma: no cover - dependency is optional
    rawpy = None


DEFAULT_SHUTTER_S = 1.0 / 60.0
DEFAULT_ISO = 100


def _safe_meta(raw: Any, key: str) -> float | None:
    meta = getattr(raw, "metadata", None)
    if meta is None:
        return None
    value = getattr(meta, key, None)
    if value in (None, 0):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _cfa_arrangement(raw: Any) -> ColorFilterArrangement:
    pattern = np.asarray(getattr(raw, "raw_pattern", None))
    desc = getattr(raw, "color_desc", b"RGBG")
    if isinstance(desc, bytes):
        desc = desc.decode("ascii", errors="ignore")
    if pattern.shape != (2, 2):
        raise UnsupportedFormatError(f"unsupported CFA pattern shape {pattern.shape}")

    letters = "".join(desc[int(v)] for v in pattern.flatten()).lower()
    try:
        return ColorFilterArrangement(letters)
    except ValueError as exc:
        raise UnsupportedFormatError(f"unsupported CFA layout {letters}") from exc


def _as_shot_neutral(values: Any) -> tuple[float, float, float]:
    wb = [float(v) for v in list(values or [1.0, 1.0, 1.0, 1.0])]
    if len(wb) < 3 or min(wb[:3]) <= 0:
        return (1.0, 1.0, 1.0)
    # LibRaw reports multipliers; the neutral is their reciprocal, green = 1.
    return (wb[1] / wb[0], 1.0, wb[1] / wb[2])


def _black_levels(raw: Any) -> tuple[float, float, float, float]:
    values = [float(v) for v in list(getattr(raw, "black_level_per_channel", None) or [0, 0, 0, 0])]
    if len(values) == 3:
        values.append(values[1])
    pattern = np.asarray(raw.raw_pattern).flatten()
    # black_level_per_channel is indexed by color; reorder to mosaic positions.
    return tuple(values[int(c)] for c in pattern)  # type: ignore[return-value]


class LibRawDecoder:
    """Camera RAW -> RawFrame decoder using rawpy (LibRaw backend)."""

    def __init__(self, pool: RawBufferPool | None = None) -> None:
        if rawpy is None:
            raise MissingDependencyError("rawpy is required for RAW import: pip install '.[raw]'")
        self._pool: RawBufferPool = pool if pool is not None else InMemoryBufferPool()

    def decode(self, path: Path, timestamp_ns: int | None = None) -> DecodedFrame:
        try:
            with rawpy.imread(str(path)) as raw:
                mosaic = np.asarray(raw.raw_image_visible, dtype=np.uint16)
                height = mosaic.shape[0] - mosaic.shape[0] % 2
                width = mosaic.shape[1] - mosaic.shape[1] % 2
                mosaic = mosaic[:height, :width]

                xyz_to_camera = np.asarray(raw.rgb_xyz_matrix, dtype=np.float64)[:3]
                if not np.any(xyz_to_camera):
                    xyz_to_camera = np.eye(3)

                exif = extract_exif_metadata(path)
                shutter = exif.shutter_s or _safe_meta(raw, "shutter") or DEFAULT_SHUTTER_S
                iso = exif.iso or _safe_meta(raw, "iso_speed") or DEFAULT_ISO
                aperture = exif.aperture_f or _safe_meta(raw, "aperture")
                focal = exif.focal_length_mm or _safe_meta(raw, "focal_len")

                camera = RawCameraMetadata(
                    sensor_arrangement=_cfa_arrangement(raw),
                    color_matrix1=xyz_to_camera,
                    color_matrix2=xyz_to_camera,
                    color_illuminant1=Illuminant.D65,
                    color_illuminant2=Illuminant.D65,
                    black_level=_black_levels(raw),
                    white_level=float(getattr(raw, "white_level", 65535)),
                    apertures=(aperture,) if aperture else (),
                    focal_lengths=(focal,) if focal else (),
                    camera_make=exif.make or "",
                    camera_model=exif.model or "",
                )
                metadata = RawImageMetadata(
                    exposure_time_ns=int(round(shutter * 1e9)),
                    iso=int(round(iso)),
                    as_shot_neutral=_as_shot_neutral(raw.camera_whitebalance),
                    timestamp_ns=timestamp_ns if timestamp_ns is not None else path.stat().st_mtime_ns,
                )

                payload = pack_mosaic(mosaic, PixelFormat.RAW16)
                buffer = self._pool.acquire(len(payload))
                buffer[:] = np.frombuffer(payload, dtype=np.uint8)
                frame = RawFrame(
                    name=path.name,
                    width=width,
                    height=height,
                    row_stride=width * 2,
                    pixel_format=PixelFormat.RAW16,
                    metadata=metadata,
                    data=buffer,
                    pool=self._pool,
                )
                return DecodedFrame(frame=frame, camera=camera)
        except (MissingDependencyError, UnsupportedFormatError):
            raise
        except Exception as exc:
            raise DecodeError(f"decode failed for {path}: {exc}") from exc
