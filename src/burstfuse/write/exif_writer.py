from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import io
import logging
import math
from pathlib import Path
import struct

import numpy as np
from PIL import Image

from burstfuse.decode.types import RawCameraMetadata, RawImageMetadata, ScreenOrientation
from burstfuse.settings import PostProcessSettings
from burstfuse.utils.formatting import to_rational


logger = logging.getLogger(__name__)


class ExifWriteError(RuntimeError):
    pass


BYTE, ASCII, SHORT, LONG, RATIONAL, UNDEFINED = 1, 2, 3, 4, 5, 7
_TYPE_SIZE = {BYTE: 1, ASCII: 1, SHORT: 2, LONG: 4, RATIONAL: 8, UNDEFINED: 1}

EXIF_IFD_POINTER = 34665
GPS_IFD_POINTER = 34853
THUMBNAIL_OFFSET = 513
THUMBNAIL_LENGTH = 514

APP1_MAX_PAYLOAD = 65533
EXIF_HEADER = b"Exif\x00\x00"

# (normal, flipped) EXIF orientation per screen orientation.
EXIF_ORIENTATION: dict[ScreenOrientation, tuple[int, int]] = {
    ScreenOrientation.LANDSCAPE: (1, 2),
    ScreenOrientation.PORTRAIT: (6, 5),
    ScreenOrientation.REVERSE_LANDSCAPE: (3, 4),
    ScreenOrientation.REVERSE_PORTRAIT: (8, 7),
}


@dataclass
class _Entry:
    tag: int
    type: int
    count: int
    payload: bytes


@dataclass
class _Ifd:
    entries: list[_Entry] = field(default_factory=list)

    def add(self, tag: int, type_: int, values: object) -> None:
        if type_ == ASCII:
            payload = str(values).encode("ascii", errors="replace") + b"\x00"
            count = len(payload)
        elif type_ == UNDEFINED:
            payload = bytes(values)  # type: ignore[arg-type]
            count = len(payload)
        else:
            seq = list(values) if isinstance(values, (list, tuple)) else [values]
            if type_ == RATIONAL:
                count = len(seq) // 2
                payload = struct.pack(f">{len(seq)}I", *seq)
            else:
                count = len(seq)
                fmt = {BYTE: "B", SHORT: "H", LONG: "I"}[type_]
                payload = struct.pack(f">{count}{fmt}", *seq)
        self.entries.append(_Entry(tag, type_, count, payload))

    def size(self) -> int:
        extra = sum(len(e.payload) + len(e.payload) % 2 for e in self.entries if len(e.payload) > 4)
        return 2 + 12 * len(self.entries) + 4 + extra

    def serialize(self, offset: int, next_ifd: int = 0) -> bytes:
        entries = sorted(self.entries, key=lambda e: e.tag)
        data_offset = offset + 2 + 12 * len(entries) + 4
        table = bytearray(struct.pack(">H", len(entries)))
        data = bytearray()
        for e in entries:
            table += struct.pack(">HHI", e.tag, e.type, e.count)
            if len(e.payload) <= 4:
                table += e.payload.ljust(4, b"\x00")
            else:
                table += struct.pack(">I", data_offset + len(data))
                data += e.payload
                if len(e.payload) % 2:
                    data += b"\x00"
        table += struct.pack(">I", next_ifd)
        return bytes(table + data)


def _set_long(ifd: _Ifd, tag: int, value: int) -> None:
    for e in ifd.entries:
        if e.tag == tag:
            e.payload = struct.pack(">I", value)
            return
    ifd.add(tag, LONG, value)


def _dms(value: float) -> tuple[int, ...]:
    value = abs(value)
    degrees = int(value)
    minutes_f = (value - degrees) * 60.0
    minutes = int(minutes_f)
    seconds = (minutes_f - minutes) * 60.0
    return (degrees, 1, minutes, 1, int(round(seconds * 1000)), 1000)


def _gps_ifd(settings: PostProcessSettings) -> _Ifd | None:
    coords = (settings.gps_latitude, settings.gps_longitude, settings.gps_altitude)
    if not all(math.isfinite(v) for v in coords):
        logger.warning("skipping gps tags, non-finite position %s", coords)
        return None

    gps = _Ifd()
    gps.add(0, BYTE, (2, 2, 0, 0))
    gps.add(1, ASCII, "N" if settings.gps_latitude >= 0 else "S")
    gps.add(2, RATIONAL, _dms(settings.gps_latitude))
    gps.add(3, ASCII, "E" if settings.gps_longitude >= 0 else "W")
    gps.add(4, RATIONAL, _dms(settings.gps_longitude))
    gps.add(5, BYTE, 0 if settings.gps_altitude >= 0 else 1)
    gps.add(6, RATIONAL, (int(round(abs(settings.gps_altitude) * 100)), 100))
    gps.add(18, ASCII, "WGS-84")

    try:
        when = datetime.fromisoformat(settings.gps_time)
    except ValueError:
        try:
            when = datetime.fromtimestamp(float(settings.gps_time) / 1000.0, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning("unparseable gps_time %r", settings.gps_time)
            return gps
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    gps.add(7, RATIONAL, (when.hour, 1, when.minute, 1, when.second, 1))
    gps.add(29, ASCII, when.strftime("%Y:%m:%d"))
    return gps


def make_thumbnail(image: np.ndarray, width: int = 320, quality: int = 80) -> bytes:
    h, w = image.shape[:2]
    height = max(1, int(round(h * width / max(w, 1))))
    thumb = Image.fromarray(image).resize((width, height), Image.Resampling.BILINEAR)
    buf = io.BytesIO()
    thumb.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def build_exif(
    metadata: RawImageMetadata,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    thumbnail: bytes | None = None,
) -> bytes:
    """Big-endian TIFF structure for an APP1 Exif segment."""
    ifd0 = _Ifd()
    normal, flipped = EXIF_ORIENTATION[metadata.screen_orientation]
    ifd0.add(274, SHORT, flipped if settings.flipped else normal)
    ifd0.add(282, RATIONAL, (72, 1))
    ifd0.add(283, RATIONAL, (72, 1))
    ifd0.add(296, SHORT, 2)
    if camera.camera_make:
        ifd0.add(271, ASCII, camera.camera_make)
    if camera.camera_model:
        ifd0.add(272, ASCII, camera.camera_model)
    ifd0.add(305, ASCII, "burstfuse")
    ifd0.add(EXIF_IFD_POINTER, LONG, 0)

    exif = _Ifd()
    exif.add(33434, RATIONAL, to_rational(metadata.exposure_time_ns / 1e9))
    exif.add(34855, SHORT, min(max(int(metadata.iso), 0), 65535))
    exif.add(36864, UNDEFINED, b"0230")
    exif.add(40961, SHORT, 1)
    exif.add(41729, UNDEFINED, b"\x01")
    exif.add(41987, SHORT, 0)
    if camera.apertures:
        aperture = camera.apertures[0]
        exif.add(33437, RATIONAL, to_rational(aperture))
        exif.add(37378, RATIONAL, to_rational(2.0 * math.log2(aperture)))
    if camera.focal_lengths:
        exif.add(37386, RATIONAL, to_rational(camera.focal_lengths[0]))
    if camera.camera_make:
        exif.add(42035, ASCII, camera.camera_make)
    if camera.camera_model:
        exif.add(42036, ASCII, camera.camera_model)

    gps = _gps_ifd(settings) if settings.gps_time else None
    if gps is not None:
        ifd0.add(GPS_IFD_POINTER, LONG, 0)

    ifd1 = None
    if thumbnail:
        ifd1 = _Ifd()
        ifd1.add(259, SHORT, 6)
        ifd1.add(282, RATIONAL, (72, 1))
        ifd1.add(283, RATIONAL, (72, 1))
        ifd1.add(296, SHORT, 2)
        ifd1.add(THUMBNAIL_OFFSET, LONG, 0)
        ifd1.add(THUMBNAIL_LENGTH, LONG, len(thumbnail))

    # Layout: header, IFD0, Exif IFD, GPS IFD, IFD1, thumbnail.
    ifd0_offset = 8
    exif_offset = ifd0_offset + ifd0.size()
    gps_offset = exif_offset + exif.size()
    ifd1_offset = gps_offset + (gps.size() if gps is not None else 0)
    thumb_offset = ifd1_offset + (ifd1.size() if ifd1 is not None else 0)

    _set_long(ifd0, EXIF_IFD_POINTER, exif_offset)
    if gps is not None:
        _set_long(ifd0, GPS_IFD_POINTER, gps_offset)
    if ifd1 is not None:
        _set_long(ifd1, THUMBNAIL_OFFSET, thumb_offset)

    out = bytearray(b"MM" + struct.pack(">HI", 42, ifd0_offset))
    out += ifd0.serialize(ifd0_offset, ifd1_offset if ifd1 is not None else 0)
    out += exif.serialize(exif_offset)
    if gps is not None:
        out += gps.serialize(gps_offset)
    if ifd1 is not None:
        out += ifd1.serialize(ifd1_offset)
        out += thumbnail
    return bytes(out)


def _strip_exif_segments(jpeg: bytes) -> tuple[bytes, bytes]:
    """Split a JPEG into SOI and the remaining segments without any APP1 Exif blocks."""
    if jpeg[:2] != b"\xff\xd8":
        raise ExifWriteError("not a JPEG stream")

    pos = 2
    kept = bytearray()
    while pos + 4 <= len(jpeg) and jpeg[pos] == 0xFF:
        marker = jpeg[pos + 1]
        if marker == 0xDA:  # start of scan: entropy-coded data follows
            break
        length = struct.unpack(">H", jpeg[pos + 2 : pos + 4])[0]
        segment = jpeg[pos : pos + 2 + length]
        if not (marker == 0xE1 and segment[4:10] == EXIF_HEADER):
            kept += segment
        pos += 2 + length
    return jpeg[:2], bytes(kept) + jpeg[pos:]


def add_exif_metadata(
    jpeg_path: Path,
    metadata: RawImageMetadata,
    camera: RawCameraMetadata,
    settings: PostProcessSettings,
    thumbnail: bytes | None = None,
) -> None:
    """Insert (or replace) the Exif APP1 segment of ``jpeg_path`` in place."""
    try:
        tiff = build_exif(metadata, camera, settings, thumbnail)
        if len(EXIF_HEADER) + len(tiff) > APP1_MAX_PAYLOAD and thumbnail:
            logger.warning("thumbnail too large for APP1 (%d bytes), writing without it", len(thumbnail))
            tiff = build_exif(metadata, camera, settings, None)
    except (ValueError, OverflowError, struct.error) as exc:
        raise ExifWriteError(f"cannot encode exif values: {exc}") from exc
    if len(EXIF_HEADER) + len(tiff) > APP1_MAX_PAYLOAD:
        raise ExifWriteError(f"exif block too large: {len(tiff)} bytes")

    soi, rest = _strip_exif_segments(jpeg_path.read_bytes())
    segment = b"\xff\xe1" + struct.pack(">H", len(EXIF_HEADER) + len(tiff) + 2) + EXIF_HEADER + tiff
    jpeg_path.write_bytes(soi + segment + rest)
