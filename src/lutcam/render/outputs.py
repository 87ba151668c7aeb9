from __future__ import annotations

from dataclasses import dataclass
import heapq
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable

from lutcam.errors import OutputLifecycleError

if TYPE_CHECKING:
    from lutcam.gl.context import FrameSink


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class OutputTarget:
    surface: "FrameSink"
    width: int
    height: int
    on_released: Callable[[], None] | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"invalid output size {self.width}x{self.height}")


class OutputHandle:
    """Close callback given to the layer that owns an output target.

    ``close()`` must be invoked exactly once; a second call raises
    ``OutputLifecycleError``.
    """

    def __init__(self, registry: "OutputRegistry", slot: int, generation: int, target: OutputTarget) -> None:
        self._registry = registry
        self.slot = slot
        self.generation = generation
        self.target = target

    @property
    def closed(self) -> bool:
        return not self._registry.is_live(self)

    def close(self) -> None:
        self._registry.request_close(self)

    def __repr__(self) -> str:
        return f"OutputHandle(slot={self.slot}, generation={self.generation}, size={self.target.width}x{self.target.height})"


class OutputRegistry:
    """Ownership table of output targets.

    Slots are reused after release and carry a generation counter, so a stale
    handle is detected instead of silently acting on a newer target. Surface
    bookkeeping (``attach``/``detach``/``snapshot``) is render-thread only; the
    lock covers the slot/generation state touched by owners on other threads.
    """

    def __init__(self, on_close_requested: Callable[[OutputHandle], None]) -> None:
        self._on_close_requested = on_close_requested
        self._lock = threading.Lock()
        self._generations: dict[int, int] = {}
        self._live: dict[int, OutputHandle] = {}
        self._free: list[int] = []
        self._retired: set[tuple[int, int]] = set()
        self._next_slot = 1
        self._surfaces: dict[int, Any] = {}

    def reserve(self, target: OutputTarget) -> OutputHandle:
        with self._lock:
            if self._free:
                slot = heapq.heappop(self._free)
            else:
                slot = self._next_slot
                self._next_slot += 1
            generation = self._generations.get(slot, 0) + 1
            self._generations[slot] = generation
            handle = OutputHandle(self, slot, generation, target)
            self._live[slot] = handle
        return handle

    def is_live(self, handle: OutputHandle) -> bool:
        with self._lock:
            return self._live.get(handle.slot) is handle

    def request_close(self, handle: OutputHandle) -> None:
        with self._lock:
            key = (handle.slot, handle.generation)
            if key in self._retired:
                self._retired.discard(key)
                logger.debug("output %r closed after shutdown reclaimed it", handle)
                return
            if self._live.get(handle.slot) is not handle:
                current = self._generations.get(handle.slot)
                raise OutputLifecycleError(
                    f"output slot {handle.slot} generation {handle.generation} already closed "
                    f"(current generation {current})"
                )
            del self._live[handle.slot]
        self._on_close_requested(handle)

    def reclaim(self, handle: OutputHandle) -> None:
        """Return a slot to the free list once its surface is gone."""
        with self._lock:
            self._surfaces.pop(handle.slot, None)
            self._live.pop(handle.slot, None)
            if self._generations.get(handle.slot) == handle.generation and handle.slot not in self._free:
                heapq.heappush(self._free, handle.slot)

    def retire(self, handle: OutputHandle) -> None:
        """Reclaim an output its owner never closed; the owner's one late close is accepted."""
        with self._lock:
            if self._live.get(handle.slot) is handle:
                self._retired.add((handle.slot, handle.generation))
        self.reclaim(handle)

    def live_handles(self) -> list[OutputHandle]:
        with self._lock:
            return [self._live[slot] for slot in sorted(self._live)]

    def attach(self, handle: OutputHandle, surface: Any) -> None:
        self._surfaces[handle.slot] = (handle, surface)

    def detach(self, handle: OutputHandle) -> Any | None:
        entry = self._surfaces.get(handle.slot)
        if entry is None or entry[0] is not handle:
            return None
        del self._surfaces[handle.slot]
        return entry[1]

    def snapshot(self) -> list[tuple[OutputHandle, Any]]:
        return [self._surfaces[slot] for slot in sorted(self._surfaces)]

    def __len__(self) -> int:
        return len(self._surfaces)
