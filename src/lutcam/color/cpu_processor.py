from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from pathlib import Path

import numpy as np

from .lut_cube import ColorTable


logger = logging.getLogger(__name__)


def _lerp(a: np.ndarray, b: np.ndarray, t: np.ndarray) -> np.ndarray:
    return a + (b - a) * t[..., None]


def _interpolate(table: ColorTable, coords: np.ndarray) -> np.ndarray:
    """Trilinear lookup for continuous lattice coordinates in ``[0, N-1]``."""
    size = table.size
    lattice = table.lattice

    i0 = np.clip(np.floor(coords).astype(np.int32), 0, size - 2)
    i1 = i0 + 1
    f = (coords - i0).astype(np.float32)

    r0, g0, b0 = i0[..., 0], i0[..., 1], i0[..., 2]
    r1, g1, b1 = i1[..., 0], i1[..., 1], i1[..., 2]
    fr, fg, fb = f[..., 0], f[..., 1], f[..., 2]

    c000 = lattice[r0, g0, b0]
    c100 = lattice[r1, g0, b0]
    c010 = lattice[r0, g1, b0]
    c110 = lattice[r1, g1, b0]
    c001 = lattice[r0, g0, b1]
    c101 = lattice[r1, g0, b1]
    c011 = lattice[r0, g1, b1]
    c111 = lattice[r1, g1, b1]

    # Blend order is fixed: red, then green, then blue.
    c00 = _lerp(c000, c100, fr)
    c01 = _lerp(c001, c101, fr)
    c10 = _lerp(c010, c110, fr)
    c11 = _lerp(c011, c111, fr)

    c0 = _lerp(c00, c10, fg)
    c1 = _lerp(c01, c11, fg)

    return _lerp(c0, c1, fb).astype(np.float32)


def sample_trilinear(table: ColorTable, rgb: np.ndarray) -> np.ndarray:
    """Look up normalized ``(..., 3)`` RGB values in ``table``."""
    x = np.asarray(rgb, dtype=np.float32)
    if x.shape[-1] != 3:
        raise ValueError(f"expected trailing RGB axis of size 3, got shape {x.shape}")
    scale = np.float32(table.size - 1)
    return _interpolate(table, x * scale)


def _apply_band(image: np.ndarray, table: ColorTable) -> np.ndarray:
    scale = np.float32(table.size - 1)
    rgb = image[..., :3].astype(np.float32) / np.float32(255.0) * scale
    result = _interpolate(table, rgb) * np.float32(255.0)

    out = image.copy()
    out[..., :3] = np.clip(np.trunc(result), 0, 255).astype(np.uint8)
    return out


def _validate_image(image: np.ndarray) -> np.ndarray:
    arr = np.asarray(image)
    if arr.dtype != np.uint8:
        raise ValueError(f"expected uint8 image, got {arr.dtype}")
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise ValueError(f"expected (height, width, 3|4) image, got shape {arr.shape}")
    return arr


def apply_color_table(image: np.ndarray, table: ColorTable, workers: int = 1) -> np.ndarray:
    arr = _validate_image(image)
    height = arr.shape[0]
    if workers <= 1 or height < 2 * workers:
        return _apply_band(arr, table)

    bounds = np.linspace(0, height, workers + 1, dtype=np.int64)
    bands = [arr[int(lo) : int(hi)] for lo, hi in zip(bounds[:-1], bounds[1:]) if hi > lo]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lutcam-cpu") as pool:
        results = list(pool.map(lambda band: _apply_band(band, table), bands))
    return np.concatenate(results, axis=0)


def apply_color_table_to_file(input_path: Path, output_path: Path, table: ColorTable, workers: int = 1) -> Path:
    from lutcam.utils.image_io import read_image, write_image

    image = read_image(input_path)
    logger.info(
        "applying LUT size=%s fingerprint=%s to %s (%sx%s)",
        table.size,
        table.fingerprint(),
        input_path,
        image.shape[1],
        image.shape[0],
    )
    out = apply_color_table(image, table, workers=workers)
    write_image(output_path, out)
    return output_path
