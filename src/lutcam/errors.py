from __future__ import annotations


class LutCamError(RuntimeError):
    pass


class ResourceInitializationError(LutCamError):
    """Context or shader program creation failed; the owning session is unusable."""


class TableFormatError(LutCamError, ValueError):
    pass


class TransientFrameError(LutCamError):
    pass


class OutputPresentError(LutCamError):
    pass


class OutputLifecycleError(LutCamError):
    """An output handle was closed twice or used after its close."""


class RenderThreadClosedError(LutCamError):
    pass
