from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Any

import numpy as np
import pytest

from lutcam.color import ColorTable, apply_color_table
from lutcam.config import RenderConfig
from lutcam.errors import ResourceInitializationError, TransientFrameError
from lutcam.render.processor import LutSurfaceProcessor


@dataclass(eq=False)
class FakeSurface:
    sink: Any
    width: int
    height: int
    buffer: np.ndarray | None = None
    destroyed: bool = False


@dataclass(eq=False)
class FakeTexture:
    size: tuple[int, int]
    pixels: np.ndarray | None = None
    released: bool = False


@dataclass
class DeviceLog:
    """Everything the fakes saw, for assertions."""

    threads: set[str] = field(default_factory=set)
    events: list[tuple[str, Any]] = field(default_factory=list)
    contexts: list["FakeGraphicsContext"] = field(default_factory=list)
    program_sets: list["FakeProgramSet"] = field(default_factory=list)
    textures: list[FakeTexture] = field(default_factory=list)
    surfaces: list[FakeSurface] = field(default_factory=list)
    fail_initialize: bool = False
    fail_programs: bool = False

    def touch(self, event: str, payload: Any = None) -> None:
        self.threads.add(threading.current_thread().name)
        self.events.append((event, payload))


class FakeGraphicsContext:
    def __init__(self, config: RenderConfig, log: DeviceLog) -> None:
        self.config = config
        self.log = log
        self.bound: Any = None
        self.released = 0
        log.contexts.append(self)

    def initialize(self) -> None:
        self.log.touch("initialize")
        if self.log.fail_initialize:
            raise ResourceInitializationError("no EGL display")

    def bind_offscreen(self) -> None:
        self.log.touch("bind_offscreen")
        self.bound = "offscreen"

    def bind_surface(self, surface: FakeSurface) -> None:
        self.log.touch("bind_surface", surface)
        if surface.destroyed:
            raise RuntimeError("cannot bind a destroyed surface")
        self.bound = surface

    def create_window_surface(self, sink: Any, width: int, height: int) -> FakeSurface:
        self.log.touch("create_surface", (width, height))
        surface = FakeSurface(sink=sink, width=width, height=height)
        self.log.surfaces.append(surface)
        return surface

    def present(self, surface: FakeSurface) -> bool:
        self.log.touch("present", surface)
        if surface.destroyed or surface.buffer is None:
            return False
        try:
            surface.sink.present(surface.buffer.copy())
        except Exception:
            return False
        return True

    def destroy_surface(self, surface: FakeSurface) -> None:
        self.log.touch("destroy_surface", surface)
        surface.destroyed = True

    def release(self) -> None:
        self.log.touch("release_context")
        self.released += 1


class FakeProgramSet:
    """Renders with the CPU reference path so outputs are deterministic."""

    def __init__(self, context: FakeGraphicsContext, intensity: float = 1.0) -> None:
        context.log.touch("compile_programs")
        if context.log.fail_programs:
            raise ResourceInitializationError("fragment shader failed to compile")
        self.context = context
        self.intensity = intensity
        self.table: ColorTable | None = None
        self.uploads: list[ColorTable | None] = []
        self.released = 0
        context.log.program_sets.append(self)

    @property
    def has_lattice(self) -> bool:
        return self.table is not None

    @property
    def program_name(self) -> str:
        return "lut-apply" if self.has_lattice else "passthrough"

    def apply_table_update(self, table: ColorTable | None) -> None:
        self.context.log.touch("upload_table", table)
        self.table = table
        self.uploads.append(table)

    def create_input_texture(self, resolution: tuple[int, int]) -> FakeTexture:
        self.context.log.touch("create_texture", resolution)
        tex = FakeTexture(size=resolution)
        self.context.log.textures.append(tex)
        return tex

    def write_input(self, texture: FakeTexture, frame: np.ndarray) -> None:
        height, width = frame.shape[:2]
        if (width, height) != texture.size:
            raise TransientFrameError("size mismatch")
        if frame.shape[2] == 3:
            frame = np.concatenate([frame, np.full((height, width, 1), 255, dtype=np.uint8)], axis=2)
        texture.pixels = frame.copy()

    def release_texture(self, texture: FakeTexture) -> None:
        self.context.log.touch("release_texture", texture)
        texture.released = True

    def draw(self, input_texture: FakeTexture, tex_matrix: np.ndarray, width: int, height: int) -> None:
        self.context.log.touch("draw", (width, height))
        src = input_texture.pixels
        out = apply_color_table(src, self.table) if self.table is not None else src.copy()
        if out.shape[:2] != (height, width):
            rows = np.arange(height) * out.shape[0] // height
            cols = np.arange(width) * out.shape[1] // width
            out = out[rows][:, cols]
        self.context.bound.buffer = out

    def release(self) -> None:
        self.context.log.touch("release_programs")
        self.released += 1


@pytest.fixture
def device_log() -> DeviceLog:
    return DeviceLog()


@pytest.fixture
def make_processor(device_log: DeviceLog):
    created: list[LutSurfaceProcessor] = []

    def _make(config: RenderConfig | None = None) -> LutSurfaceProcessor:
        processor = LutSurfaceProcessor(
            config or RenderConfig(),
            context_factory=lambda cfg: FakeGraphicsContext(cfg, device_log),
            programs_factory=lambda ctx, intensity: FakeProgramSet(ctx, intensity),
        )
        created.append(processor)
        return processor

    yield _make
    for processor in created:
        processor.release(timeout=5)


def invert_table(size: int = 2) -> ColorTable:
    identity = ColorTable.identity(size)
    return ColorTable(size=size, data=1.0 - identity.data, title="invert")


def random_frame(width: int, height: int, seed: int = 0, channels: int = 4) -> np.ndarray:
    rng = np.random.default_rng(seed)
    frame = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    if channels == 4:
        frame[..., 3] = 255
    return frame
