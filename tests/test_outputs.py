from __future__ import annotations

import pytest

from lutcam.errors import OutputLifecycleError
from lutcam.render.outputs import OutputHandle, OutputRegistry, OutputTarget
from lutcam.render.sinks import LatestFrameSink


def _registry() -> tuple[OutputRegistry, list[OutputHandle]]:
    requested: list[OutputHandle] = []
    return OutputRegistry(on_close_requested=requested.append), requested


def _target(width: int = 4, height: int = 2) -> OutputTarget:
    return OutputTarget(surface=LatestFrameSink(), width=width, height=height)


def test_target_rejects_empty_size() -> None:
    with pytest.raises(ValueError):
        OutputTarget(surface=LatestFrameSink(), width=0, height=2)


def test_close_is_forwarded_once_and_double_close_raises() -> None:
    registry, requested = _registry()
    handle = registry.reserve(_target())
    assert not handle.closed

    handle.close()
    assert handle.closed
    assert requested == [handle]

    with pytest.raises(OutputLifecycleError, match="already closed"):
        handle.close()
    assert requested == [handle]


def test_reclaimed_slot_is_reused_with_new_generation() -> None:
    registry, _ = _registry()
    first = registry.reserve(_target())
    other = registry.reserve(_target())
    first.close()
    registry.reclaim(first)

    reused = registry.reserve(_target())
    assert reused.slot == first.slot
    assert reused.generation == first.generation + 1
    assert other.slot != reused.slot

    # The stale handle cannot close the target now occupying its slot.
    with pytest.raises(OutputLifecycleError):
        first.close()
    assert registry.is_live(reused)


def test_snapshot_is_ordered_by_slot_and_independent_of_later_changes() -> None:
    registry, _ = _registry()
    handles = [registry.reserve(_target()) for _ in range(3)]
    for handle in reversed(handles):
        registry.attach(handle, f"surface-{handle.slot}")

    snapshot = registry.snapshot()
    assert [h for h, _ in snapshot] == handles
    assert len(registry) == 3

    assert registry.detach(handles[1]) == f"surface-{handles[1].slot}"
    assert len(snapshot) == 3
    assert len(registry) == 2


def test_detach_ignores_stale_handle() -> None:
    registry, _ = _registry()
    old = registry.reserve(_target())
    old.close()
    registry.reclaim(old)
    new = registry.reserve(_target())
    registry.attach(new, "fresh")

    assert registry.detach(old) is None
    assert registry.detach(new) == "fresh"


def test_live_handles_lists_unclosed_outputs() -> None:
    registry, _ = _registry()
    a = registry.reserve(_target())
    b = registry.reserve(_target())
    a.close()
    assert registry.live_handles() == [b]


def test_retired_handle_reports_closed_and_accepts_one_late_close() -> None:
    registry, requested = _registry()
    handle = registry.reserve(_target())
    registry.attach(handle, "surface")

    registry.retire(handle)

    assert handle.closed
    assert len(registry) == 0
    handle.close()
    assert requested == []
    with pytest.raises(OutputLifecycleError):
        handle.close()


def test_retire_ignores_handle_already_closing() -> None:
    registry, requested = _registry()
    handle = registry.reserve(_target())
    handle.close()
    registry.retire(handle)
    with pytest.raises(OutputLifecycleError):
        handle.close()
    assert requested == [handle]
