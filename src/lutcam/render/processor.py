from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import enum
import itertools
import logging
import threading
from typing import Any, Callable

from lutcam.color.lut_cube import ColorTable
from lutcam.config import RenderConfig
from lutcam.errors import RenderThreadClosedError, ResourceInitializationError, TransientFrameError

from .canvas import FrameCanvas
from .compositor import CompositeReport, Compositor
from .outputs import OutputHandle, OutputRegistry, OutputTarget
from .table_slot import PendingTableSlot
from .worker import RenderThread


logger = logging.getLogger(__name__)


class ProcessorState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    CONTEXT_READY = "context_ready"
    SESSION_ACTIVE = "session_active"
    SESSION_SUPERSEDED = "session_superseded"
    SESSION_CLOSED = "session_closed"
    RELEASED = "released"
    FAILED = "failed"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    CLOSED = "closed"


@dataclass(eq=False)
class RenderSession:
    session_id: int
    resolution: tuple[int, int]
    texture: Any
    canvas: FrameCanvas
    status: SessionStatus = SessionStatus.ACTIVE
    frames_rendered: int = 0


@dataclass
class ProcessorStats:
    frames_rendered: int = 0
    frames_skipped: int = 0
    present_failures: int = 0
    table_uploads: int = 0


def _default_factories() -> tuple[Callable[..., Any], Callable[..., Any]]:
    from lutcam.gl import GraphicsContext, ShaderProgramSet

    return GraphicsContext, ShaderProgramSet


class LutSurfaceProcessor:
    """Intercepts a frame stream, applies the current LUT and fans frames out.

    Frame sources call ``on_session_requested``/``on_session_closed`` and push
    frames into the returned canvas. Output owners call ``on_output_added``
    and later close the returned handle. All device work happens on one
    render thread; ``set_color_table`` is the only call that never marshals.
    """

    def __init__(
        self,
        config: RenderConfig | None = None,
        context_factory: Callable[[RenderConfig], Any] | None = None,
        programs_factory: Callable[[Any, float], Any] | None = None,
    ) -> None:
        self.config = config or RenderConfig()
        if context_factory is None or programs_factory is None:
            default_context, default_programs = _default_factories()
            context_factory = context_factory or default_context
            programs_factory = programs_factory or default_programs
        self._context_factory = context_factory
        self._programs_factory = programs_factory

        self._worker = RenderThread(name=self.config.thread_name)
        self._worker.start()
        self._lock = threading.Lock()
        self._released = False
        self._fatal: ResourceInitializationError | None = None
        self._torn_down = False

        self._context: Any = None
        self._programs: Any = None
        self._compositor = Compositor()

        self._sessions: dict[int, RenderSession] = {}
        self._active_session_id: int | None = None
        self._session_ids = itertools.count(1)
        self._sessions_seen = False

        self._outputs = OutputRegistry(on_close_requested=self._close_requested)
        self._pending_outputs: deque[OutputHandle] = deque()

        self._table_slot = PendingTableSlot()
        self._table_lock = threading.Lock()
        self._current_table: ColorTable | None = None

        self.stats = ProcessorStats()
        self.last_report: CompositeReport | None = None

    # -- control surface ------------------------------------------------

    def set_color_table(self, table: ColorTable | None) -> None:
        if table is not None and not isinstance(table, ColorTable):
            raise TypeError(f"expected ColorTable or None, got {type(table).__name__}")
        with self._table_lock:
            self._current_table = table
            self._table_slot.put(table)

    def get_current_color_table(self) -> ColorTable | None:
        return self._current_table

    @property
    def state(self) -> ProcessorState:
        if self._released:
            return ProcessorState.RELEASED
        if self._fatal is not None:
            return ProcessorState.FAILED
        if self._programs is None:
            return ProcessorState.UNINITIALIZED
        sessions = list(self._sessions.values())
        if self._active_session_id is None:
            return ProcessorState.SESSION_CLOSED if self._sessions_seen else ProcessorState.CONTEXT_READY
        if any(s.status is SessionStatus.SUPERSEDED for s in sessions):
            return ProcessorState.SESSION_SUPERSEDED
        return ProcessorState.SESSION_ACTIVE

    @property
    def active_session_id(self) -> int | None:
        return self._active_session_id

    def session_ids(self) -> list[int]:
        return self._inspect(lambda: sorted(self._sessions))

    def session_status(self, session_id: int) -> SessionStatus:
        def _status() -> SessionStatus:
            session = self._sessions.get(session_id)
            return SessionStatus.CLOSED if session is None else session.status

        return self._inspect(_status)

    def output_count(self) -> int:
        return self._inspect(lambda: len(self._outputs))

    def pending_output_count(self) -> int:
        return self._inspect(lambda: len(self._pending_outputs))

    def sync(self, timeout: float | None = None) -> None:
        """Block until every task queued so far has run on the render thread."""
        if not self._worker.closed:
            self._worker.call(lambda: None, timeout=timeout)

    def _inspect(self, fn: Callable[[], Any]) -> Any:
        if self._worker.closed:
            return fn()
        try:
            return self._worker.call(fn)
        except RenderThreadClosedError:
            return fn()

    def _ensure_accepting(self) -> None:
        if self._released:
            raise RenderThreadClosedError("processor has been released")
        if self._fatal is not None:
            raise self._fatal

    # -- frame source contract -----------------------------------------

    def on_session_requested(self, resolution: tuple[int, int]) -> FrameCanvas:
        width, height = int(resolution[0]), int(resolution[1])
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid session resolution {width}x{height}")
        self._ensure_accepting()
        return self._worker.call(self._create_session, (width, height))

    def on_frame_available(self, session_id: int) -> None:
        if self._released or self._fatal is not None:
            return
        try:
            self._worker.post(self._render_frame, session_id)
        except RenderThreadClosedError:
            logger.debug("frame for session %s arrived after shutdown", session_id)

    def on_session_closed(self, session_id: int, result_code: int = 0) -> None:
        if self._released:
            return
        try:
            self._worker.post(self._close_session, session_id, result_code)
        except RenderThreadClosedError:
            logger.debug("close for session %s arrived after shutdown", session_id)

    # -- output sink contract ------------------------------------------

    def on_output_added(self, target: OutputTarget) -> OutputHandle:
        self._ensure_accepting()
        handle = self._outputs.reserve(target)
        try:
            self._worker.post(self._register_output, handle)
        except RenderThreadClosedError:
            self._outputs.reclaim(handle)
            raise
        return handle

    def _close_requested(self, handle: OutputHandle) -> None:
        try:
            self._worker.post(self._remove_output, handle)
        except RenderThreadClosedError:
            logger.debug("output %r closed after shutdown; already reclaimed", handle)

    # -- teardown -------------------------------------------------------

    def release(self, timeout: float | None = None) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            self._worker.post(self._teardown)
        except RenderThreadClosedError:
            pass
        self._worker.quit_safely(timeout=timeout)

    shutdown = release

    def __enter__(self) -> "LutSurfaceProcessor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()

    # -- render thread --------------------------------------------------

    def _ensure_context(self) -> None:
        if self._programs is not None:
            return
        if self._fatal is not None:
            raise self._fatal

        context = None
        try:
            context = self._context_factory(self.config)
            context.initialize()
            context.bind_offscreen()
            programs = self._programs_factory(context, self.config.lut_intensity)
        except Exception as exc:
            if context is not None:
                try:
                    context.release()
                except Exception:
                    logger.exception("context release after failed initialization also failed")
            if isinstance(exc, ResourceInitializationError):
                self._fatal = exc
            else:
                self._fatal = ResourceInitializationError(f"render pipeline initialization failed: {exc}")
                self._fatal.__cause__ = exc
            logger.error("render pipeline unusable: %s", self._fatal)
            raise self._fatal

        self._context = context
        self._programs = programs
        logger.info("render pipeline ready (intensity=%.2f)", self.config.lut_intensity)

        while self._pending_outputs:
            self._attach_output(self._pending_outputs.popleft())

    def _create_session(self, resolution: tuple[int, int]) -> FrameCanvas:
        self._ensure_context()

        session_id = next(self._session_ids)
        texture = self._programs.create_input_texture(resolution)
        canvas = FrameCanvas(session_id, resolution, self.on_frame_available)

        previous = self._sessions.get(self._active_session_id) if self._active_session_id is not None else None
        if previous is not None:
            previous.status = SessionStatus.SUPERSEDED
            logger.info("session %s superseded by session %s", previous.session_id, session_id)

        self._sessions[session_id] = RenderSession(
            session_id=session_id,
            resolution=resolution,
            texture=texture,
            canvas=canvas,
        )
        self._active_session_id = session_id
        self._sessions_seen = True
        logger.info("session %s input canvas ready: %sx%s", session_id, resolution[0], resolution[1])
        return canvas

    def _render_frame(self, session_id: int) -> None:
        session = self._sessions.get(session_id)
        if session is None or self._programs is None:
            logger.debug("frame for closed session %s ignored", session_id)
            return

        update = self._table_slot.take()
        if update is not None:
            try:
                self._programs.apply_table_update(update.table)
                self.stats.table_uploads += 1
            except Exception:
                logger.exception("LUT upload failed; rendering passthrough")

        try:
            frame = session.canvas.acquire_latest()
            self._programs.write_input(session.texture, frame.pixels)
        except TransientFrameError as exc:
            self.stats.frames_skipped += 1
            logger.warning("frame skipped: %s", exc)
            return
        except Exception as exc:
            self.stats.frames_skipped += 1
            logger.warning("frame skipped on session %s: %s", session_id, exc)
            return

        if session.status is not SessionStatus.ACTIVE:
            self.stats.frames_skipped += 1
            logger.debug("session %s is superseded; frame not composited", session_id)
            return

        report = self._compositor.composite(
            self._context,
            self._programs,
            session.texture,
            frame.transform,
            self._outputs.snapshot(),
        )
        session.frames_rendered += 1
        self.stats.frames_rendered += 1
        self.stats.present_failures += report.failed
        self.last_report = report

    def _close_session(self, session_id: int, result_code: int) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.debug("close for unknown session %s ignored", session_id)
            return

        session.canvas.release()
        self._programs.release_texture(session.texture)
        session.status = SessionStatus.CLOSED
        if self._active_session_id == session_id:
            self._active_session_id = None
            logger.info("session %s closed (result=%s)", session_id, result_code)
        else:
            logger.info("superseded session %s closed (result=%s)", session_id, result_code)

    def _register_output(self, handle: OutputHandle) -> None:
        if not self._outputs.is_live(handle):
            return
        if self._programs is None:
            self._pending_outputs.append(handle)
            logger.debug("output %r queued until the context is ready", handle)
            return
        self._attach_output(handle)

    def _attach_output(self, handle: OutputHandle) -> None:
        target = handle.target
        try:
            surface = self._context.create_window_surface(target.surface, target.width, target.height)
        except Exception:
            logger.exception("unable to create surface for output %r", handle)
            return
        self._outputs.attach(handle, surface)
        logger.info("output %sx%s registered (%s active)", target.width, target.height, len(self._outputs))

    def _remove_output(self, handle: OutputHandle) -> None:
        if self._torn_down:
            self._outputs.reclaim(handle)
            return
        try:
            self._pending_outputs.remove(handle)
        except ValueError:
            pass
        surface = self._outputs.detach(handle)
        if surface is not None and self._context is not None:
            self._context.destroy_surface(surface)
        self._outputs.reclaim(handle)
        logger.info("output %r released (%s remaining)", handle, len(self._outputs))
        self._notify_released(handle)

    def _notify_released(self, handle: OutputHandle) -> None:
        callback = handle.target.on_released
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("on_released callback failed for output %r", handle)

    def _teardown(self) -> None:
        programs, context = self._programs, self._context

        for session in list(self._sessions.values()):
            session.canvas.release()
            if programs is not None:
                programs.release_texture(session.texture)
            session.status = SessionStatus.CLOSED
        self._sessions.clear()
        self._active_session_id = None

        if programs is not None:
            programs.release()

        leftovers = [handle for handle, _ in self._outputs.snapshot()] + list(self._pending_outputs)
        for handle in leftovers:
            surface = self._outputs.detach(handle)
            if surface is not None and context is not None:
                context.destroy_surface(surface)
            if self._outputs.is_live(handle):
                logger.warning("output %r was never closed by its owner; surface reclaimed at shutdown", handle)
                self._outputs.retire(handle)
            self._notify_released(handle)
        self._pending_outputs.clear()

        if context is not None:
            context.release()
        self._programs = None
        self._context = None
        self._torn_down = True
        logger.info("render pipeline released")
