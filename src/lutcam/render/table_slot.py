from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from lutcam.color.lut_cube import ColorTable


@dataclass(frozen=True)
class TableUpdate:
    """One requested change; ``table is None`` means clear the bound LUT."""

    table: ColorTable | None


class PendingTableSlot:
    """Single-value mailbox between writers on any thread and the render pass.

    ``deque.append``/``popleft`` are atomic, so neither side ever waits. A
    newer write replaces an unconsumed older one.
    """

    def __init__(self) -> None:
        self._slot: deque[TableUpdate] = deque(maxlen=1)

    def put(self, table: ColorTable | None) -> None:
        self._slot.append(TableUpdate(table))

    def take(self) -> TableUpdate | None:
        try:
            return self._slot.popleft()
        except IndexError:
            return None

    def __bool__(self) -> bool:
        return bool(self._slot)
