from __future__ import annotations

from pathlib import Path

import numpy as np


def write_quad_debug_tiff(path: Path, quad: np.ndarray) -> None:
    """Four fused channel planes as one planar uint16 TIFF."""
    try:
        import tifffile  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("tifffile is required for debug TIFF output. Install with: pip install tifffile") from exc

    arr = np.asarray(quad, dtype=np.uint16)
    path.parent.mkdir(parents=True, exist_ok=True)
    tifffile.imwrite(str(path), arr, photometric="minisblack", planarconfig="separate")
