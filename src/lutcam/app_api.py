from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
from pathlib import Path
import threading
import time
from typing import Any, Callable

import numpy as np

from lutcam.color import ColorTable, apply_color_table as cpu_apply_color_table, load_cube
from lutcam.config import AppConfig
from lutcam.errors import TableFormatError
from lutcam.render.processor import LutSurfaceProcessor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableLoadResult:
    path: Path
    table: ColorTable | None
    error: str | None

    @property
    def ok(self) -> bool:
        return self.table is not None


@dataclass(frozen=True)
class ApplyResult:
    image: np.ndarray | None
    error: str | None
    elapsed_s: float
    table_fingerprint: str | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


class LutCam:
    """Control surface over the live render pipeline and the still-image path.

    The processor is created lazily, so a still-only caller never touches
    the GPU.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        processor_factory: Callable[[AppConfig], LutSurfaceProcessor] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self._processor_factory = processor_factory or (lambda cfg: LutSurfaceProcessor(cfg.render))
        self._processor: LutSurfaceProcessor | None = None
        self._current_table: ColorTable | None = None
        self._lock = threading.Lock()
        self._still_pool: ThreadPoolExecutor | None = None
        self._shut_down = False

    @property
    def processor(self) -> LutSurfaceProcessor:
        with self._lock:
            if self._shut_down:
                raise RuntimeError("LutCam has been shut down")
            if self._processor is None:
                self._processor = self._processor_factory(self.config)
                if self._current_table is not None:
                    self._processor.set_color_table(self._current_table)
            return self._processor

    def load_color_table(self, path: str | Path) -> TableLoadResult:
        table_path = Path(path).expanduser()
        try:
            table = load_cube(table_path, strict_rows=self.config.loader.strict_rows)
        except TableFormatError as exc:
            logger.error("LUT rejected: %s", exc)
            return TableLoadResult(path=table_path, table=None, error=str(exc))
        logger.info("loaded LUT %s size=%s fingerprint=%s", table_path.name, table.size, table.fingerprint())
        return TableLoadResult(path=table_path, table=table, error=None)

    def set_color_table(self, table: ColorTable | None) -> None:
        # Held across the push so the processor sees writes in the same order.
        with self._lock:
            self._current_table = table
            if self._processor is not None:
                self._processor.set_color_table(table)

    def get_current_color_table(self) -> ColorTable | None:
        return self._current_table

    def apply_color_table(self, image: np.ndarray, table: ColorTable | None = None) -> ApplyResult:
        table = table if table is not None else self._current_table
        started = time.monotonic()
        if table is None:
            return ApplyResult(image=None, error="no color table is set", elapsed_s=0.0)
        try:
            out = cpu_apply_color_table(image, table, workers=self.config.still.workers)
        except Exception as exc:
            logger.exception("still image LUT apply failed")
            return ApplyResult(
                image=None,
                error=str(exc),
                elapsed_s=time.monotonic() - started,
                table_fingerprint=table.fingerprint(),
            )
        elapsed = time.monotonic() - started
        logger.info("applied LUT to %sx%s still in %.3fs", out.shape[1], out.shape[0], elapsed)
        return ApplyResult(image=out, error=None, elapsed_s=elapsed, table_fingerprint=table.fingerprint())

    def apply_color_table_async(self, image: np.ndarray, table: ColorTable | None = None) -> "Future[ApplyResult]":
        table = table if table is not None else self._current_table
        with self._lock:
            if self._shut_down:
                raise RuntimeError("LutCam has been shut down")
            if self._still_pool is None:
                self._still_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lutcam-still")
            pool = self._still_pool
        return pool.submit(self.apply_color_table, image, table)

    def shutdown(self) -> None:
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            processor, self._processor = self._processor, None
            pool, self._still_pool = self._still_pool, None
        if pool is not None:
            pool.shutdown(wait=True)
        if processor is not None:
            processor.release()

    def __enter__(self) -> "LutCam":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
