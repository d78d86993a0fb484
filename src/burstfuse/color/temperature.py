from __future__ import annotations

import numpy as np


# Tint units follow the DNG convention: 1 unit is 1/3000 of a uv step off the locus.
TINT_SCALE = -1.0 / 3000.0

MIN_TEMPERATURE = 1500.0
MAX_TEMPERATURE = 50000.0


def _planckian_uv(temperature: float) -> np.ndarray:
    # Krystek's rational approximation of the Planckian locus in CIE 1960 uv.
    t = float(np.clip(temperature, MIN_TEMPERATURE, MAX_TEMPERATURE))
    u = (0.860117757 + 1.54118254e-4 * t + 1.28641212e-7 * t * t) / (1.0 + 8.42420235e-4 * t + 7.08145163e-7 * t * t)
    v = (0.317398726 + 4.22806245e-5 * t + 4.20481691e-8 * t * t) / (1.0 - 2.89741816e-5 * t + 1.61456053e-7 * t * t)
    return np.array([u, v], dtype=np.float64)


def _locus_normal(temperature: float) -> np.ndarray:
    step = max(1.0, temperature * 1e-3)
    tangent = _planckian_uv(temperature + step) - _planckian_uv(temperature - step)
    normal = np.array([-tangent[1], tangent[0]], dtype=np.float64)
    return normal / np.linalg.norm(normal)


def _uv_to_xy(uv: np.ndarray) -> np.ndarray:
    u, v = float(uv[0]), float(uv[1])
    d = 2.0 * u - 8.0 * v + 4.0
    return np.array([3.0 * u / d, 2.0 * v / d], dtype=np.float64)


def _xy_to_uv(xy: np.ndarray) -> np.ndarray:
    x, y = float(xy[0]), float(xy[1])
    d = -2.0 * x + 12.0 * y + 3.0
    return np.array([4.0 * x / d, 6.0 * y / d], dtype=np.float64)


def temperature_to_xy(temperature: float, tint: float = 0.0) -> np.ndarray:
    uv = _planckian_uv(temperature) + (tint * TINT_SCALE) * _locus_normal(temperature)
    return _uv_to_xy(uv)


def xy_to_temperature(xy: np.ndarray) -> tuple[float, float]:
    """Nearest locus temperature and signed tint for a chromaticity."""
    target = _xy_to_uv(xy)

    mireds = np.linspace(1e6 / MAX_TEMPERATURE, 1e6 / MIN_TEMPERATURE, 256)
    best_mired = float(mireds[0])
    for _ in range(4):
        dists = [float(np.sum((_planckian_uv(1e6 / m) - target) ** 2)) for m in mireds]
        best = int(np.argmin(dists))
        best_mired = float(mireds[best])
        lo = mireds[max(best - 1, 0)]
        hi = mireds[min(best + 1, len(mireds) - 1)]
        mireds = np.linspace(lo, hi, 64)

    temperature = 1e6 / best_mired
    offset = target - _planckian_uv(temperature)
    tint = float(offset @ _locus_normal(temperature)) / TINT_SCALE
    return temperature, tint
