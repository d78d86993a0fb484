from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import shutil
import subprocess
from typing import Any


logger = logging.getLogger(__name__)


@dataclass
class ExifMetadata:
    iso: float | None = None
    shutter_s: float | None = None
    aperture_f: float | None = None
    focal_length_mm: float | None = None
    make: str | None = None
    model: str | None = None

    def is_empty(self) -> bool:
        return self.iso is None and self.shutter_s is None and self.aperture_f is None


def _ratio_like_to_float(value: Any) -> float | None:
    if value is None:
        return None

    # exifread wraps values in list-like containers.
    if hasattr(value, "values"):
        value = value.values
    if isinstance(value, (list, tuple)) and len(value) > 0:
        value = value[0]

    if hasattr(value, "num") and hasattr(value, "den"):
        den = float(getattr(value, "den", 0) or 0)
        if den == 0.0:
            return None
        return float(getattr(value, "num", 0)) / den

    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _positive(value: float | None) -> float | None:
    if value is None or value <= 0:
        return None
    return value


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _extract_with_exifread(path: Path) -> ExifMetadata:
    try:
        import exifread  # type: ignore
    except ImportError:
        return ExifMetadata()

    try:
        with path.open("rb") as f:
            tags = exifread.process_file(f, details=False)
    except Exception as exc:
        logger.debug("exifread failed for %s: %s", path, exc)
        return ExifMetadata()

    return ExifMetadata(
        iso=_positive(_ratio_like_to_float(tags.get("EXIF ISOSpeedRatings") or tags.get("EXIF PhotographicSensitivity"))),
        shutter_s=_positive(_ratio_like_to_float(tags.get("EXIF ExposureTime"))),
        aperture_f=_positive(_ratio_like_to_float(tags.get("EXIF FNumber"))),
        focal_length_mm=_positive(_ratio_like_to_float(tags.get("EXIF FocalLength"))),
        make=_text(tags.get("Image Make")),
        model=_text(tags.get("Image Model")),
    )


def _extract_with_exiftool(path: Path) -> ExifMetadata:
    exiftool = shutil.which("exiftool")
    if exiftool is None:
        return ExifMetadata()

    proc = subprocess.run(
        [exiftool, "-j", "-n", "-ISO", "-ExposureTime", "-FNumber", "-FocalLength", "-Make", "-Model", str(path)],
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0:
        logger.debug("exiftool failed for %s: %s", path, proc.stderr.strip())
        return ExifMetadata()

    try:
        rows = json.loads(proc.stdout)
    except json.JSONDecodeError:
        return ExifMetadata()
    if not rows:
        return ExifMetadata()
    row = rows[0]

    return ExifMetadata(
        iso=_positive(_ratio_like_to_float(row.get("ISO"))),
        shutter_s=_positive(_ratio_like_to_float(row.get("ExposureTime"))),
        aperture_f=_positive(_ratio_like_to_float(row.get("FNumber"))),
        focal_length_mm=_positive(_ratio_like_to_float(row.get("FocalLength"))),
        make=_text(row.get("Make")),
        model=_text(row.get("Model")),
    )


def extract_exif_metadata(path: Path) -> ExifMetadata:
    """Capture parameters from a camera RAW file.

    Preference order:
    1) Python exifread (in-process, TIFF-based RAW families)
    2) exiftool CLI (if installed)
    """

    if path.suffix.lower() in {".cr2", ".dng", ".nef", ".arw", ".rw2", ".orf"}:
        md = _extract_with_exifread(path)
        if not md.is_empty():
            return md

    return _extract_with_exiftool(path)
