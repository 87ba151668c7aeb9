from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
import logging
import queue
import threading
from typing import Any, Callable

from lutcam.errors import RenderThreadClosedError


logger = logging.getLogger(__name__)


@dataclass
class _Task:
    fn: Callable[..., Any]
    args: tuple[Any, ...]
    future: Future = field(default_factory=Future)

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


class RenderThread:
    """Single named thread draining an ordered task queue.

    Every device-side resource is created, used and destroyed from tasks run
    here; other threads hand work over with ``post`` or ``call``.
    """

    def __init__(self, name: str = "LutRenderThread") -> None:
        self.name = name
        self._queue: queue.Queue[_Task | None] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._lock = threading.Lock()
        self._closed = False
        self._started = False

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def is_current(self) -> bool:
        return threading.current_thread() is self._thread

    def post(self, fn: Callable[..., Any], *args: Any) -> Future:
        task = _Task(fn=fn, args=args)
        with self._lock:
            if self._closed:
                raise RenderThreadClosedError(f"{self.name} no longer accepts tasks")
            self._queue.put(task)
        return task.future

    def call(self, fn: Callable[..., Any], *args: Any, timeout: float | None = None) -> Any:
        if self.is_current():
            return fn(*args)
        return self.post(fn, *args).result(timeout=timeout)

    def quit_safely(self, timeout: float | None = None) -> None:
        """Stop accepting tasks, run everything already queued, then join."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        if self._started and not self.is_current():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("%s did not stop within %ss", self.name, timeout)

    def _run(self) -> None:
        logger.debug("%s started", self.name)
        while True:
            task = self._queue.get()
            if task is None:
                break
            if not task.future.set_running_or_notify_cancel():
                continue
            try:
                result = task.fn(*task.args)
            except BaseException as exc:
                logger.exception("render task %s failed", task.name)
                task.future.set_exception(exc)
            else:
                task.future.set_result(result)
        logger.debug("%s stopped", self.name)
