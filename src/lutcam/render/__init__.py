from .canvas import CanvasFrame, FrameCanvas, flip_vertical, identity_transform, mirror_horizontal
from .compositor import CompositeReport, Compositor
from .outputs import OutputHandle, OutputRegistry, OutputTarget
from .processor import LutSurfaceProcessor, ProcessorState, SessionStatus
from .sinks import ImageFileSink, LatestFrameSink
from .table_slot import PendingTableSlot, TableUpdate
from .worker import RenderThread

__all__ = [
    "CanvasFrame",
    "CompositeReport",
    "Compositor",
    "FrameCanvas",
    "ImageFileSink",
    "LatestFrameSink",
    "LutSurfaceProcessor",
    "OutputHandle",
    "OutputRegistry",
    "OutputTarget",
    "PendingTableSlot",
    "ProcessorState",
    "RenderThread",
    "SessionStatus",
    "TableUpdate",
    "flip_vertical",
    "identity_transform",
    "mirror_horizontal",
]
