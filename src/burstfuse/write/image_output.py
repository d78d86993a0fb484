from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def write_jpeg(path: Path, image: np.ndarray, quality: int = 95) -> None:
    rgb = np.asarray(image, dtype=np.uint8)
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"expected (h, w, 3) uint8 image, got {rgb.shape}")
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(rgb).save(path, format="JPEG", quality=int(np.clip(quality, 1, 100)))


def preview_path(output_path: Path) -> Path:
    return output_path.with_name(f"PREVIEW_{output_path.name}")
