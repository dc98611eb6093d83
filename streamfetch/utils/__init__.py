"""Shared utility helpers."""

from streamfetch.utils.operation import CancelableOperation
from streamfetch.utils.operation_manager import OperationManager
from streamfetch.utils.timer import Timer

__all__ = [
    "CancelableOperation",
    "OperationManager",
    "Timer",
]
