from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable

import numpy as np

from lutcam.errors import TransientFrameError


logger = logging.getLogger(__name__)


def identity_transform() -> np.ndarray:
    return np.eye(4, dtype=np.float32)


def mirror_horizontal() -> np.ndarray:
    """Texture transform for front-facing sources (u -> 1 - u)."""
    m = np.eye(4, dtype=np.float32)
    m[0, 0] = -1.0
    m[0, 3] = 1.0
    return m


def flip_vertical() -> np.ndarray:
    m = np.eye(4, dtype=np.float32)
    m[1, 1] = -1.0
    m[1, 3] = 1.0
    return m


@dataclass(frozen=True)
class CanvasFrame:
    pixels: np.ndarray
    transform: np.ndarray
    timestamp_ns: int


class FrameCanvas:
    """Per-session input surface handed to a frame source.

    Producers call ``queue_frame`` from any thread. Only the newest frame is
    kept; the render thread pulls it with ``acquire_latest``.
    """

    def __init__(
        self,
        session_id: int,
        resolution: tuple[int, int],
        on_frame_available: Callable[[int], None],
    ) -> None:
        self.session_id = session_id
        self.resolution = (int(resolution[0]), int(resolution[1]))
        self._on_frame_available = on_frame_available
        self._lock = threading.Lock()
        self._latest: CanvasFrame | None = None
        self._released = False
        self.dropped_frames = 0

    @property
    def width(self) -> int:
        return self.resolution[0]

    @property
    def height(self) -> int:
        return self.resolution[1]

    @property
    def released(self) -> bool:
        return self._released

    def queue_frame(
        self,
        pixels: np.ndarray,
        transform: np.ndarray | None = None,
        timestamp_ns: int | None = None,
    ) -> bool:
        arr = np.asarray(pixels)
        if arr.dtype != np.uint8 or arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"expected (height, width, 3|4) uint8 frame, got {arr.dtype} {arr.shape}")
        if (arr.shape[1], arr.shape[0]) != self.resolution:
            raise ValueError(
                f"frame {arr.shape[1]}x{arr.shape[0]} does not match canvas {self.width}x{self.height}"
            )
        matrix = identity_transform() if transform is None else np.asarray(transform, dtype=np.float32)
        if matrix.shape != (4, 4):
            raise ValueError(f"transform must be 4x4, got {matrix.shape}")

        frame = CanvasFrame(
            pixels=arr.copy(),
            transform=matrix,
            timestamp_ns=time.monotonic_ns() if timestamp_ns is None else int(timestamp_ns),
        )
        with self._lock:
            if self._released:
                logger.debug("session %s canvas released; frame dropped", self.session_id)
                return False
            notify = self._latest is None
            if not notify:
                self.dropped_frames += 1
            self._latest = frame

        # Notifications coalesce while a frame is still waiting to be pulled.
        if notify:
            self._on_frame_available(self.session_id)
        return True

    def acquire_latest(self) -> CanvasFrame:
        with self._lock:
            if self._released:
                raise TransientFrameError(f"session {self.session_id} canvas is released")
            frame, self._latest = self._latest, None
        if frame is None:
            raise TransientFrameError(f"no new frame on session {self.session_id}")
        return frame

    def release(self) -> None:
        with self._lock:
            self._released = True
            self._latest = None
