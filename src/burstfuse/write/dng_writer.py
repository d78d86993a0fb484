from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from pathlib import Path
import struct

import numpy as np

from burstfuse import __version__
from burstfuse.decode.types import ColorFilterArrangement, RawCameraMetadata, RawImageMetadata, ScreenOrientation
from burstfuse.kernels.raw import build_bayer
from burstfuse.utils.formatting import to_rational, to_srational


logger = logging.getLogger(__name__)


class DngWriteError(RuntimeError):
    pass


GAIN_MAP_OPCODE_ID = 9
OPCODE_DNG_VERSION = 0x01030000

# TIFF field types.
BYTE, ASCII, SHORT, LONG, RATIONAL, UNDEFINED, SRATIONAL = 1, 2, 3, 4, 5, 7, 10

CFA_PATTERN: dict[ColorFilterArrangement, tuple[int, int, int, int]] = {
    ColorFilterArrangement.RGGB: (0, 1, 1, 2),
    ColorFilterArrangement.GRBG: (1, 0, 2, 1),
    ColorFilterArrangement.GBRG: (1, 2, 0, 1),
    ColorFilterArrangement.BGGR: (2, 1, 1, 0),
}

DNG_ORIENTATION: dict[ScreenOrientation, int] = {
    ScreenOrientation.LANDSCAPE: 1,
    ScreenOrientation.REVERSE_LANDSCAPE: 3,
    ScreenOrientation.PORTRAIT: 6,
    ScreenOrientation.REVERSE_PORTRAIT: 8,
}

# (row, col) offset of each quad channel inside the 2x2 mosaic cell.
CHANNEL_OFFSETS = ((0, 0), (0, 1), (1, 0), (1, 1))


def gain_map_opcode(gains: np.ndarray, top: int, left: int, bottom: int, right: int) -> bytes:
    g = np.asarray(gains, dtype=np.float32)
    rows, cols = g.shape
    params = struct.pack(">IIII", top, left, bottom, right)
    params += struct.pack(">IIII", 0, 1, 2, 2)  # plane, planes, row pitch, col pitch
    params += struct.pack(">II", rows, cols)
    params += struct.pack(">dd", 1.0 / rows, 1.0 / cols)
    params += struct.pack(">dd", 0.0, 0.0)
    params += struct.pack(">I", 1)
    params += g.astype(">f4").tobytes()
    return struct.pack(">IIII", GAIN_MAP_OPCODE_ID, OPCODE_DNG_VERSION, 0, len(params)) + params


def opcode_list(opcodes: Sequence[bytes]) -> bytes:
    return struct.pack(">I", len(opcodes)) + b"".join(opcodes)


def shading_opcodes(shading_maps: Sequence[np.ndarray], width: int, height: int) -> bytes:
    opcodes = [
        gain_map_opcode(shading_maps[c], top, left, height, width)
        for c, (top, left) in enumerate(CHANNEL_OFFSETS)
    ]
    return opcode_list(opcodes)


def build_raw_image(planes: np.ndarray, pad, bayer: Callable[[np.ndarray], np.ndarray] = build_bayer) -> np.ndarray:
    """Interleave the fused quad back into a mosaic with the edge padding removed."""
    return bayer(pad.crop(np.asarray(planes)))


def _rationals(values: Sequence[float]) -> tuple[int, ...]:
    return tuple(v for value in values for v in to_rational(value))


def _srationals(matrix: np.ndarray) -> tuple[int, ...]:
    return tuple(v for value in np.asarray(matrix, dtype=np.float64).ravel() for v in to_srational(value))


def _ascii(text: str) -> str:
    return text.encode("ascii", errors="replace").decode("ascii") or "burstfuse"


def dng_tags(
    mosaic: np.ndarray,
    camera: RawCameraMetadata,
    metadata: RawImageMetadata,
    orientation: ScreenOrientation,
    black_level: Sequence[float],
    white_level: int,
    save_shading_map: bool = True,
) -> list[tuple[int, int, int, object, bool]]:
    height, width = mosaic.shape
    model = _ascii(" ".join(v for v in (camera.camera_make, camera.camera_model) if v))

    tags: list[tuple[int, int, int, object, bool]] = [
        (271, ASCII, 0, _ascii(camera.camera_make), True),
        (272, ASCII, 0, model, True),
        (274, SHORT, 1, DNG_ORIENTATION[orientation], True),
        (33421, SHORT, 2, (2, 2), True),
        (33422, BYTE, 4, CFA_PATTERN[camera.sensor_arrangement], True),
        (33434, RATIONAL, 1, to_rational(metadata.exposure_time_ns / 1e9), True),
        (34855, SHORT, 1, min(int(metadata.iso), 65535), True),
        (50706, BYTE, 4, (1, 4, 0, 0), True),
        (50707, BYTE, 4, (1, 1, 0, 0), True),
        (50708, ASCII, 0, model, True),
        (50710, BYTE, 3, (0, 1, 2), True),
        (50711, SHORT, 1, 1, True),
        (50713, SHORT, 2, (2, 2), True),
        (50714, RATIONAL, 4, _rationals(black_level), True),
        (50717, LONG, 1, int(white_level), True),
        (50718, RATIONAL, 2, (1, 1, 1, 1), True),
        (50719, LONG, 2, (0, 0), True),
        (50720, LONG, 2, (width, height), True),
        (50721, SRATIONAL, 9, _srationals(camera.color_matrix1), True),
        (50722, SRATIONAL, 9, _srationals(camera.color_matrix2), True),
        (50728, RATIONAL, 3, _rationals(metadata.as_shot_neutral), True),
        (50778, SHORT, 1, camera.color_illuminant1.dng_light_source, True),
        (50779, SHORT, 1, camera.color_illuminant2.dng_light_source, True),
        (50936, ASCII, 0, "burstfuse", True),
    ]

    if camera.apertures:
        tags.append((33437, RATIONAL, 1, to_rational(camera.apertures[0]), True))
    if camera.focal_lengths:
        tags.append((37386, RATIONAL, 1, to_rational(camera.focal_lengths[0]), True))
    if camera.calibration_matrix1 is not None and camera.calibration_matrix2 is not None:
        tags.append((50723, SRATIONAL, 9, _srationals(camera.calibration_matrix1), True))
        tags.append((50724, SRATIONAL, 9, _srationals(camera.calibration_matrix2), True))
    if camera.forward_matrix1 is not None and camera.forward_matrix2 is not None:
        tags.append((50964, SRATIONAL, 9, _srationals(camera.forward_matrix1), True))
        tags.append((50965, SRATIONAL, 9, _srationals(camera.forward_matrix2), True))
    if save_shading_map:
        opcodes = shading_opcodes(metadata.shading_map(), width, height)
        tags.append((51009, UNDEFINED, len(opcodes), opcodes, True))

    return sorted(tags, key=lambda t: t[0])


def write_dng(
    path: Path,
    mosaic: np.ndarray,
    camera: RawCameraMetadata,
    metadata: RawImageMetadata,
    orientation: ScreenOrientation,
    black_level: Sequence[float],
    white_level: int,
    save_shading_map: bool = True,
) -> None:
    try:
        import tifffile  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("tifffile is required for DNG output. Install with: pip install tifffile") from exc

    data = np.ascontiguousarray(mosaic, dtype=np.uint16)
    if data.ndim != 2 or data.shape[0] % 2 or data.shape[1] % 2:
        raise DngWriteError(f"mosaic must be 2-D with even dimensions, got {data.shape}")

    tags = dng_tags(data, camera, metadata, orientation, black_level, white_level, save_shading_map)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        tifffile.imwrite(
            str(path),
            data,
            photometric="cfa",
            subfiletype=0,
            software=f"burstfuse {__version__}",
            metadata=None,
            extratags=tags,
        )
    except (OSError, ValueError, TypeError, struct.error) as exc:
        raise DngWriteError(f"failed to write {path}: {exc}") from exc
    logger.info("wrote dng %s (%dx%d)", path, data.shape[1], data.shape[0])
