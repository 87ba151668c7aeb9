from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Callable

import numpy as np

from lutcam.color import ColorTable, apply_color_table
from lutcam.config import RenderConfig
from lutcam.errors import TransientFrameError
from lutcam.render.outputs import OutputTarget
from lutcam.render.processor import LutSurfaceProcessor
from lutcam.render.sinks import LatestFrameSink


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParityReport:
    width: int
    height: int
    table_size: int
    table_fingerprint: str
    tolerance: int
    max_abs_diff: int
    mean_abs_diff: float
    mismatched_pixels: int

    @property
    def passed(self) -> bool:
        return self.max_abs_diff <= self.tolerance

    def to_json_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["passed"] = self.passed
        return payload


def parity_test_image(width: int, height: int, seed: int = 7) -> np.ndarray:
    """Gradient ramps over a seeded noise field, so edges and interior cells are both hit."""
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    xs = np.linspace(0, 255, width).astype(np.uint8)
    image[0, :, 0] = xs
    image[0, :, 1] = xs
    image[0, :, 2] = xs
    if height > 1:
        image[-1, :, 0] = xs
        image[-1, :, 1] = 255 - xs
        image[-1, :, 2] = 0
    return image


def render_through_pipeline(
    image: np.ndarray,
    table: ColorTable | None,
    outputs: int = 1,
    config: RenderConfig | None = None,
    timeout: float | None = 30.0,
    processor_factory: Callable[[RenderConfig], LutSurfaceProcessor] | None = None,
) -> list[np.ndarray]:
    """Push one still through the live pipeline and collect what each output received."""
    arr = np.asarray(image, dtype=np.uint8)
    height, width = arr.shape[:2]
    if arr.shape[2] == 3:
        arr = np.concatenate([arr, np.full((height, width, 1), 255, dtype=np.uint8)], axis=2)

    sinks = [LatestFrameSink(name=f"output-{idx + 1}") for idx in range(outputs)]
    processor = (processor_factory or LutSurfaceProcessor)(config or RenderConfig())
    try:
        processor.set_color_table(table)
        canvas = processor.on_session_requested((width, height))
        handles = [processor.on_output_added(OutputTarget(surface=sink, width=width, height=height)) for sink in sinks]
        canvas.queue_frame(arr)
        processor.sync(timeout=timeout)

        frames = []
        for sink in sinks:
            if sink.frame is None:
                raise TransientFrameError(f"{sink.name} received no frame")
            frames.append(sink.frame)

        for handle in handles:
            handle.close()
        processor.on_session_closed(canvas.session_id, 0)
        processor.sync(timeout=timeout)
    finally:
        processor.release()
    return frames


def run_parity_check(
    table: ColorTable,
    width: int = 64,
    height: int = 64,
    tolerance: int = 2,
    config: RenderConfig | None = None,
    processor_factory: Callable[[RenderConfig], LutSurfaceProcessor] | None = None,
) -> ParityReport:
    image = parity_test_image(width, height)
    cpu = apply_color_table(image, table)
    (gpu,) = render_through_pipeline(
        image,
        table,
        outputs=1,
        config=config,
        processor_factory=processor_factory,
    )

    diff = np.abs(gpu[..., :3].astype(np.int16) - cpu.astype(np.int16))
    report = ParityReport(
        width=width,
        height=height,
        table_size=table.size,
        table_fingerprint=table.fingerprint(),
        tolerance=int(tolerance),
        max_abs_diff=int(diff.max()) if diff.size else 0,
        mean_abs_diff=float(diff.mean()) if diff.size else 0.0,
        mismatched_pixels=int(np.count_nonzero(diff.max(axis=-1) > tolerance)),
    )
    if report.passed:
        logger.info("GPU/CPU parity ok: max diff %s (tolerance %s)", report.max_abs_diff, tolerance)
    else:
        logger.warning(
            "GPU/CPU parity exceeded tolerance: max diff %s, %s pixel(s) over %s",
            report.max_abs_diff,
            report.mismatched_pixels,
            tolerance,
        )
    return report
