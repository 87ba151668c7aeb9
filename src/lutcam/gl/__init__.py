from .context import FrameSink, GraphicsContext, WindowSurface
from .programs import LUT_APPLY, PASSTHROUGH, ShaderProgramSet

__all__ = [
    "FrameSink",
    "GraphicsContext",
    "LUT_APPLY",
    "PASSTHROUGH",
    "ShaderProgramSet",
    "WindowSurface",
]
