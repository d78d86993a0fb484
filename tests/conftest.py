from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import cv2
import numpy as np
import pytest

from burstfuse.container import RawContainerWriter
from burstfuse.decode.buffers import InMemoryBufferPool
from burstfuse.decode.types import (
    ColorFilterArrangement,
    PixelFormat,
    RawCameraMetadata,
    RawFrame,
    RawImageMetadata,
)
from burstfuse.kernels.raw import pack_mosaic
from burstfuse.settings import PostProcessSettings


WHITE_LEVEL = 1023.0


def make_camera(**overrides: object) -> RawCameraMetadata:
    values: dict[str, object] = {
        "sensor_arrangement": ColorFilterArrangement.RGGB,
        "color_matrix1": np.eye(3),
        "color_matrix2": np.eye(3),
        "black_level": (0.0, 0.0, 0.0, 0.0),
        "white_level": WHITE_LEVEL,
        "apertures": (2.0,),
        "focal_lengths": (4.5,),
        "camera_make": "Acme",
        "camera_model": "Burst 1",
    }
    values.update(overrides)
    return RawCameraMetadata(**values)  # type: ignore[arg-type]


def make_metadata(**overrides: object) -> RawImageMetadata:
    values: dict[str, object] = {"exposure_time_ns": 10_000_000, "iso": 100}
    values.update(overrides)
    return RawImageMetadata(**values)  # type: ignore[arg-type]


def texture(height: int, width: int, low: float, high: float, seed: int = 0) -> np.ndarray:
    """Smooth random texture in [low, high], float32."""
    rng = np.random.default_rng(seed)
    noise = rng.random((height, width)).astype(np.float32)
    smooth = cv2.GaussianBlur(noise, (0, 0), 3.0)
    smooth = (smooth - smooth.min()) / max(float(smooth.max() - smooth.min()), 1e-6)
    return low + smooth * (high - low)


def coarse_texture(height: int, width: int, low: float, high: float, factor: int = 4, seed: int = 0) -> np.ndarray:
    """``texture`` with features ``factor`` times larger, so coarse pyramid levels keep detail."""
    small = texture(height // factor, width // factor, low, high, seed)
    return cv2.resize(small, (width, height), interpolation=cv2.INTER_LINEAR)


def mosaic_from_quad(quad: np.ndarray) -> np.ndarray:
    q = np.asarray(quad)
    _, h, w = q.shape
    out = np.empty((h * 2, w * 2), dtype=np.uint16)
    out[0::2, 0::2] = q[0]
    out[0::2, 1::2] = q[1]
    out[1::2, 0::2] = q[2]
    out[1::2, 1::2] = q[3]
    return out


def make_frame(
    mosaic: np.ndarray,
    metadata: RawImageMetadata | None = None,
    name: str = "frame.raw",
    pool: InMemoryBufferPool | None = None,
) -> RawFrame:
    m = np.asarray(mosaic, dtype=np.uint16)
    payload = pack_mosaic(m, PixelFormat.RAW16)
    pool = pool or InMemoryBufferPool()
    buffer = pool.acquire(len(payload))
    buffer[:] = np.frombuffer(payload, dtype=np.uint8)
    return RawFrame(
        name=name,
        width=m.shape[1],
        height=m.shape[0],
        row_stride=m.shape[1] * 2,
        pixel_format=PixelFormat.RAW16,
        metadata=metadata or make_metadata(),
        data=buffer,
        pool=pool,
    )


def write_container(
    path: Path,
    mosaics: Sequence[np.ndarray],
    camera: RawCameraMetadata | None = None,
    metadata: Sequence[RawImageMetadata] | None = None,
    settings: PostProcessSettings | None = None,
    is_hdr: bool = False,
) -> Path:
    camera = camera or make_camera()
    with RawContainerWriter(path, camera, settings=settings, is_hdr=is_hdr) as writer:
        for index, mosaic in enumerate(mosaics):
            m = np.asarray(mosaic, dtype=np.uint16)
            meta = metadata[index] if metadata is not None else make_metadata(timestamp_ns=index)
            writer.add_frame(
                f"frame_{index:04d}.raw",
                pack_mosaic(m, PixelFormat.RAW16),
                m.shape[1],
                m.shape[0],
                m.shape[1] * 2,
                PixelFormat.RAW16,
                meta,
            )
    return path


@pytest.fixture
def camera() -> RawCameraMetadata:
    return make_camera()


@pytest.fixture
def burst_writer(tmp_path: Path) -> Callable[..., Path]:
    def _write(mosaics: Sequence[np.ndarray], name: str = "burst.zip", **kwargs: object) -> Path:
        return write_container(tmp_path / name, mosaics, **kwargs)  # type: ignore[arg-type]

    return _write
