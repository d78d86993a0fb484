from __future__ import annotations

from dataclasses import asdict, dataclass, fields
import logging
from typing import Any


logger = logging.getLogger(__name__)


@dataclass
class PostProcessSettings:
    """Rendering knobs. Negative values mark fields to be auto-estimated."""

    spatial_denoise_level: int = -1
    temperature: float = -1.0
    tint: float = -1.0
    shadows: float = -1.0
    exposure: float = 0.0
    blacks: float = -1.0
    white_point: float = -1.0
    contrast: float = 0.5
    saturation: float = 1.0
    sharpen0: float = 2.5
    sharpen1: float = 1.2
    jpeg_quality: int = 95
    dng: bool = False
    flipped: bool = False
    capture_mode: str = "night"
    gps_latitude: float = 0.0
    gps_longitude: float = 0.0
    gps_altitude: float = 0.0
    gps_time: str = ""
    # Histogram mass in the darkest and brightest bins, reported by estimate_settings.
    clipped_lows: float = 0.0
    clipped_highs: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> PostProcessSettings:
        """Build settings from a JSON object; unknown or malformed keys fall back to defaults."""
        settings = cls()
        if not raw:
            return settings

        for f in fields(cls):
            if f.name not in raw or raw[f.name] is None:
                continue
            default = getattr(settings, f.name)
            value = raw[f.name]
            try:
                if isinstance(default, bool):
                    coerced: Any = value if isinstance(value, bool) else str(value).lower() in {"1", "true", "yes"}
                elif isinstance(default, int):
                    coerced = int(value)
                elif isinstance(default, float):
                    coerced = float(value)
                else:
                    coerced = str(value)
            except (TypeError, ValueError):
                logger.warning("ignoring invalid post-process setting %s=%r", f.name, value)
                continue
            setattr(settings, f.name, coerced)
        return settings
