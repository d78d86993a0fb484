from __future__ import annotations

from burstfuse.utils.formatting import (
    exposure_ns_to_fraction,
    shutter_seconds_to_fraction,
    to_rational,
    to_srational,
)


def test_shutter_seconds_to_fraction_common_values() -> None:
    assert shutter_seconds_to_fraction(1 / 60) == "1/60"
    assert shutter_seconds_to_fraction(0.1) == "1/10"


def test_shutter_seconds_to_fraction_invalid_values() -> None:
    assert shutter_seconds_to_fraction(None) is None
    assert shutter_seconds_to_fraction(0.0) is None
    assert shutter_seconds_to_fraction(-1.0) is None


def test_exposure_ns_to_fraction() -> None:
    assert exposure_ns_to_fraction(10_000_000) == "1/100"
    assert exposure_ns_to_fraction(0) is None


def test_rationals() -> None:
    assert to_rational(0.5) == (1, 2)
    assert to_rational(-3.0) == (0, 1)
    assert to_srational(-0.25) == (-1, 4)
