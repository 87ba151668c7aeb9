from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import logging
from pathlib import Path
from typing import Iterable

import numpy as np

from lutcam.errors import TableFormatError


logger = logging.getLogger(__name__)

SIZE_DIRECTIVES = ("LUT_3D_SIZE", "SIZE")
METADATA_DIRECTIVES = ("TITLE", "DOMAIN_MIN", "DOMAIN_MAX", "LUT_1D_INPUT_RANGE", "LUT_3D_INPUT_RANGE")


@dataclass(frozen=True, eq=False)
class ColorTable:
    """Dense N x N x N RGB lattice, rows kept in file order (red varies fastest)."""

    size: int
    data: np.ndarray
    title: str | None = None
    domain_min: tuple[float, float, float] = (0.0, 0.0, 0.0)
    domain_max: tuple[float, float, float] = (1.0, 1.0, 1.0)
    _lattice: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.size < 2:
            raise TableFormatError(f"lattice size must be >= 2, got {self.size}")
        arr = np.array(self.data, dtype=np.float32, copy=True).reshape((-1, 3))
        expected = self.size**3
        if arr.shape[0] != expected:
            raise TableFormatError(f"expected {expected} rows for size {self.size}, got {arr.shape[0]}")
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

        lattice = arr.reshape((self.size, self.size, self.size, 3), order="F")
        lattice.setflags(write=False)
        object.__setattr__(self, "_lattice", lattice)

    @property
    def lattice(self) -> np.ndarray:
        """View indexed ``[r, g, b, channel]``."""
        return self._lattice

    def entry(self, r: int, g: int, b: int) -> np.ndarray:
        return self.data[(b * self.size + g) * self.size + r]

    def fingerprint(self) -> str:
        digest = hashlib.sha256()
        digest.update(str(self.size).encode("ascii"))
        digest.update(self.data.tobytes())
        return digest.hexdigest()[:16]

    @classmethod
    def identity(cls, size: int) -> "ColorTable":
        ramp = np.linspace(0.0, 1.0, size, dtype=np.float32)
        b, g, r = np.meshgrid(ramp, ramp, ramp, indexing="ij")
        data = np.stack([r.ravel(), g.ravel(), b.ravel()], axis=-1)
        return cls(size=size, data=data, title="identity")


def _parse_triplet(parts: list[str], line_no: int, source: str) -> tuple[float, float, float]:
    if len(parts) < 4:
        raise TableFormatError(f"{source}:{line_no}: {parts[0]} expects three values")
    try:
        return float(parts[1]), float(parts[2]), float(parts[3])
    except ValueError as exc:
        raise TableFormatError(f"{source}:{line_no}: invalid {parts[0]} values") from exc


def parse_cube(lines: Iterable[str], source: str = "<memory>", strict_rows: bool = False) -> ColorTable:
    size = 0
    title: str | None = None
    domain_min = (0.0, 0.0, 0.0)
    domain_max = (1.0, 1.0, 1.0)
    values: list[tuple[float, float, float]] = []
    skipped: list[int] = []

    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        head = parts[0].upper()

        if head in SIZE_DIRECTIVES:
            try:
                size = int(parts[1])
            except (IndexError, ValueError) as exc:
                raise TableFormatError(f"{source}:{line_no}: invalid {head} directive") from exc
            continue
        if head == "TITLE":
            title = line[len(parts[0]) :].strip().strip('"') or None
            continue
        if head in ("DOMAIN_MIN", "DOMAIN_MAX"):
            try:
                triplet = _parse_triplet(parts, line_no, source)
            except TableFormatError as exc:
                if strict_rows:
                    raise
                logger.warning("ignoring %s; keeping default domain", exc)
                continue
            if head == "DOMAIN_MIN":
                domain_min = triplet
            else:
                domain_max = triplet
            continue
        if head in METADATA_DIRECTIVES:
            continue

        try:
            if len(parts) != 3:
                raise ValueError(f"expected 3 values, got {len(parts)}")
            values.append((float(parts[0]), float(parts[1]), float(parts[2])))
        except ValueError as exc:
            if strict_rows:
                raise TableFormatError(f"{source}:{line_no}: malformed data row: {exc}") from exc
            skipped.append(line_no)

    if skipped:
        logger.warning(
            "skipped %s malformed data row(s) in %s (first at line %s)",
            len(skipped),
            source,
            skipped[0],
        )

    if size <= 0:
        raise TableFormatError(f"missing LUT_3D_SIZE in {source}")
    if size < 2:
        raise TableFormatError(f"LUT_3D_SIZE must be >= 2 in {source}, got {size}")

    expected = size * size * size
    if len(values) != expected:
        raise TableFormatError(f"invalid LUT size in {source}: expected {expected} rows, got {len(values)}")

    table = ColorTable(
        size=size,
        data=np.asarray(values, dtype=np.float32),
        title=title,
        domain_min=domain_min,
        domain_max=domain_max,
    )
    logger.debug("parsed LUT %s size=%s fingerprint=%s", source, size, table.fingerprint())
    return table


def load_cube(path: Path, strict_rows: bool = False) -> ColorTable:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            return parse_cube(f, source=str(path), strict_rows=strict_rows)
    except OSError as exc:
        raise TableFormatError(f"unable to read LUT {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise TableFormatError(f"LUT {path} is not UTF-8 text") from exc
