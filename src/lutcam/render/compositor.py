from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Sequence

import numpy as np

from lutcam.errors import OutputPresentError

from .outputs import OutputHandle


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompositeReport:
    program: str
    presented: int
    failed: int

    @property
    def targets(self) -> int:
        return self.presented + self.failed


class Compositor:
    """Draws one input texture onto every surface of an output snapshot."""

    def composite(
        self,
        context: Any,
        programs: Any,
        input_texture: Any,
        tex_matrix: np.ndarray,
        snapshot: Sequence[tuple[OutputHandle, Any]],
    ) -> CompositeReport:
        program = programs.program_name
        if not snapshot:
            return CompositeReport(program=program, presented=0, failed=0)

        presented = 0
        failed = 0
        for handle, surface in snapshot:
            try:
                context.bind_surface(surface)
                programs.draw(input_texture, tex_matrix, handle.target.width, handle.target.height)
                if not context.present(surface):
                    raise OutputPresentError(f"present returned failure for {handle!r}")
                presented += 1
            except Exception as exc:
                failed += 1
                logger.warning("output %r skipped this frame: %s", handle, exc)

        context.bind_offscreen()
        return CompositeReport(program=program, presented=presented, failed=failed)
