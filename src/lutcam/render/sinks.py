from __future__ import annotations

import logging
from pathlib import Path
import threading

import numpy as np

from lutcam.utils.image_io import write_image


logger = logging.getLogger(__name__)


class LatestFrameSink:
    """Keeps the most recently presented frame; used for live preview and tests."""

    def __init__(self, name: str = "preview") -> None:
        self.name = name
        self._cond = threading.Condition()
        self._frame: np.ndarray | None = None
        self.count = 0

    def present(self, frame: np.ndarray) -> None:
        with self._cond:
            self._frame = frame
            self.count += 1
            self._cond.notify_all()

    @property
    def frame(self) -> np.ndarray | None:
        with self._cond:
            return self._frame

    def wait_for_count(self, count: int, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self.count >= count, timeout=timeout)


class ImageFileSink:
    """Writes each presented frame to ``directory`` as numbered PNG files."""

    def __init__(self, directory: Path, prefix: str = "frame", keep_alpha: bool = False) -> None:
        self.directory = Path(directory)
        self.prefix = prefix
        self.keep_alpha = keep_alpha
        self.written: list[Path] = []

    def present(self, frame: np.ndarray) -> None:
        path = self.directory / f"{self.prefix}_{len(self.written) + 1:06d}.png"
        write_image(path, frame if self.keep_alpha else frame[..., :3])
        self.written.append(path)
        logger.debug("wrote %s", path)
