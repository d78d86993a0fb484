from __future__ import annotations

import numpy as np


# sRGB / Rec.709 chromaticities.
SRGB_PRIMARIES = np.array([[0.6400, 0.3300], [0.3000, 0.6000], [0.1500, 0.0600]], dtype=np.float64)

D50_WHITE = np.array([0.3457, 0.3585], dtype=np.float64)  # profile connection space white
D65_WHITE = np.array([0.3127, 0.3290], dtype=np.float64)


def xy_to_xyz(xy: np.ndarray) -> np.ndarray:
    x, y = float(xy[0]), float(xy[1])
    return np.array([x / y, 1.0, (1.0 - x - y) / y], dtype=np.float64)


def xyz_to_xy(xyz: np.ndarray) -> np.ndarray:
    total = float(np.sum(xyz))
    if total <= 0.0:
        return D50_WHITE.copy()
    return np.array([xyz[0] / total, xyz[1] / total], dtype=np.float64)


def rgb_to_xyz_matrix(primaries: np.ndarray, white_xy: np.ndarray) -> np.ndarray:
    m = np.column_stack([xy_to_xyz(p) for p in primaries])
    s = np.linalg.solve(m, xy_to_xyz(white_xy))
    return m * s


def bradford_adaptation(src_white_xy: np.ndarray, dst_white_xy: np.ndarray) -> np.ndarray:
    m = np.array(
        [[0.8951, 0.2664, -0.1614], [-0.7502, 1.7135, 0.0367], [0.0389, -0.0685, 1.0296]],
        dtype=np.float64,
    )
    src_lms = m @ xy_to_xyz(src_white_xy)
    dst_lms = m @ xy_to_xyz(dst_white_xy)
    return np.linalg.inv(m) @ np.diag(dst_lms / src_lms) @ m


def matrix_pcs_to_srgb() -> np.ndarray:
    """D50 XYZ -> linear sRGB (D65)."""
    xyz_to_srgb = np.linalg.inv(rgb_to_xyz_matrix(SRGB_PRIMARIES, D65_WHITE))
    return xyz_to_srgb @ bradford_adaptation(D50_WHITE, D65_WHITE)
