"""Livestream shift timeline: week grid, drag-resize and replacement requests."""

from .altrequests import AltRequestWorkflow
from .sync import ScheduleSyncLayer
from .timegrid import ZoomState
from .timeline import DragResizeController

__version__ = "0.1.0"

__all__ = [
    "AltRequestWorkflow",
    "DragResizeController",
    "ScheduleSyncLayer",
    "ZoomState",
    "__version__",
]
