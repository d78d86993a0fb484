from __future__ import annotations

from fractions import Fraction


def shutter_seconds_to_fraction(value: float | None, max_denominator: int = 1000000) -> str | None:
    if value is None:
        return None
    if value <= 0:
        return None

    frac = Fraction(value).limit_denominator(max_denominator)
    return f"{frac.numerator}/{frac.denominator}"


def exposure_ns_to_fraction(exposure_time_ns: int) -> str | None:
    return shutter_seconds_to_fraction(exposure_time_ns / 1e9)


def to_rational(value: float, max_denominator: int = 1000000) -> tuple[int, int]:
    """Non-negative value as a TIFF RATIONAL (numerator, denominator) pair."""
    frac = Fraction(max(float(value), 0.0)).limit_denominator(max_denominator)
    num, den = frac.numerator, frac.denominator
    while num > 0xFFFFFFFF or den > 0xFFFFFFFF:
        num //= 2
        den = max(1, den // 2)
    return num, den


def to_srational(value: float, max_denominator: int = 100000) -> tuple[int, int]:
    frac = Fraction(float(value)).limit_denominator(max_denominator)
    return frac.numerator, frac.denominator
