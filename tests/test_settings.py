from __future__ import annotations

from burstfuse.settings import PostProcessSettings


def test_from_dict_none_gives_defaults() -> None:
    settings = PostProcessSettings.from_dict(None)
    assert settings == PostProcessSettings()
    assert settings.shadows == -1.0
    assert settings.contrast == 0.5


def test_from_dict_coerces_and_ignores_bad_values() -> None:
    settings = PostProcessSettings.from_dict(
        {
            "shadows": "2.5",
            "dng": "true",
            "jpeg_quality": "high",
            "spatial_denoise_level": 3.0,
            "capture_mode": "hdr",
            "unknown_key": 1,
        }
    )
    assert settings.shadows == 2.5
    assert settings.dng is True
    assert settings.jpeg_quality == 95
    assert settings.spatial_denoise_level == 3
    assert settings.capture_mode == "hdr"


def test_to_dict_round_trip() -> None:
    settings = PostProcessSettings(temperature=5200.0, tint=4.0, flipped=True, gps_time="2024-05-01T10:00:00")
    assert PostProcessSettings.from_dict(settings.to_dict()) == settings
