from __future__ import annotations

from pathlib import Path

import numpy as np


def _pil_image():
    try:
        from PIL import Image
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("Pillow is required for image file I/O. Install with: pip install Pillow") from exc
    return Image


def read_image(path: Path) -> np.ndarray:
    """Decode ``path`` into an 8-bit RGB or RGBA array (alpha kept when present)."""
    Image = _pil_image()
    with Image.open(path) as img:
        has_alpha = "A" in img.getbands() or (img.mode == "P" and "transparency" in img.info)
        mode = "RGBA" if has_alpha else "RGB"
        return np.asarray(img.convert(mode), dtype=np.uint8).copy()


def write_image(path: Path, image: np.ndarray) -> None:
    Image = _pil_image()
    arr = np.ascontiguousarray(image, dtype=np.uint8)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(arr).save(path)
