from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Protocol

import moderngl
import numpy as np

from lutcam.config import RenderConfig
from lutcam.errors import ResourceInitializationError


logger = logging.getLogger(__name__)


class FrameSink(Protocol):
    def present(self, frame: np.ndarray) -> None:
        ...


@dataclass(eq=False)
class WindowSurface:
    sink: FrameSink
    width: int
    height: int
    framebuffer: moderngl.Framebuffer | None = None
    renderbuffer: moderngl.Renderbuffer | None = None


class GraphicsContext:
    """Owns one standalone GL context, its 1x1 offscreen target and window surfaces.

    Everything after construction must happen on the thread that called
    ``initialize()``.
    """

    def __init__(self, config: RenderConfig | None = None) -> None:
        self.config = config or RenderConfig()
        self._ctx: moderngl.Context | None = None
        self._offscreen: moderngl.Framebuffer | None = None
        self._offscreen_rb: moderngl.Renderbuffer | None = None
        self._surfaces: list[WindowSurface] = []
        self._owner: int | None = None

    @property
    def gl(self) -> moderngl.Context:
        if self._ctx is None:
            raise RuntimeError("graphics context is not initialized")
        self._check_owner()
        return self._ctx

    def _check_owner(self) -> None:
        if self._owner is not None and self._owner != threading.get_ident():
            raise RuntimeError(
                f"graphics context used from {threading.current_thread().name}; "
                "it must only be touched from its render thread"
            )

    def initialize(self) -> None:
        if self._ctx is not None:
            self._check_owner()
            return

        settings: dict[str, object] = {"standalone": True, "require": int(self.config.gl_version)}
        if self.config.backend:
            settings["backend"] = self.config.backend
        try:
            ctx = moderngl.create_context(**settings)
        except Exception as exc:
            raise ResourceInitializationError(
                f"unable to create GL {self.config.gl_version} context (backend={self.config.backend}): {exc}"
            ) from exc

        try:
            rb = ctx.renderbuffer((1, 1), components=4)
            offscreen = ctx.framebuffer(color_attachments=[rb])
        except Exception as exc:
            ctx.release()
            raise ResourceInitializationError(f"unable to create offscreen buffer: {exc}") from exc

        self._ctx = ctx
        self._offscreen = offscreen
        self._offscreen_rb = rb
        self._owner = threading.get_ident()
        offscreen.use()

        info = ctx.info
        logger.info(
            "GL context ready: %s / %s (%s)",
            info.get("GL_VENDOR"),
            info.get("GL_RENDERER"),
            info.get("GL_VERSION"),
        )

    def bind_offscreen(self) -> None:
        self._check_owner()
        if self._offscreen is None:
            raise RuntimeError("graphics context is not initialized")
        self._offscreen.use()

    def bind_surface(self, surface: WindowSurface) -> None:
        self._check_owner()
        if surface.framebuffer is None:
            raise RuntimeError("cannot bind a destroyed surface")
        surface.framebuffer.use()

    def create_window_surface(self, sink: FrameSink, width: int, height: int) -> WindowSurface:
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid surface size {width}x{height}")
        ctx = self.gl
        rb = ctx.renderbuffer((width, height), components=4)
        fbo = ctx.framebuffer(color_attachments=[rb])
        surface = WindowSurface(sink=sink, width=width, height=height, framebuffer=fbo, renderbuffer=rb)
        self._surfaces.append(surface)
        logger.debug("created window surface %sx%s", width, height)
        return surface

    def present(self, surface: WindowSurface) -> bool:
        self._check_owner()
        if surface.framebuffer is None:
            logger.warning("present skipped: surface already destroyed")
            return False
        try:
            raw = surface.framebuffer.read(components=4, alignment=1)
            frame = np.frombuffer(raw, dtype=np.uint8).reshape((surface.height, surface.width, 4)).copy()
            surface.sink.present(frame)
        except Exception:
            logger.exception("present failed for %sx%s surface", surface.width, surface.height)
            return False
        return True

    def destroy_surface(self, surface: WindowSurface) -> None:
        self._check_owner()
        if surface.framebuffer is not None:
            surface.framebuffer.release()
        if surface.renderbuffer is not None:
            surface.renderbuffer.release()
        surface.framebuffer = None
        surface.renderbuffer = None
        if surface in self._surfaces:
            self._surfaces.remove(surface)

    def release(self) -> None:
        if self._ctx is None:
            return
        self._check_owner()

        for surface in list(self._surfaces):
            self.destroy_surface(surface)
        if self._offscreen is not None:
            self._offscreen.release()
        if self._offscreen_rb is not None:
            self._offscreen_rb.release()
        self._ctx.release()

        self._offscreen = None
        self._offscreen_rb = None
        self._ctx = None
        self._owner = None
        logger.info("GL context released")
