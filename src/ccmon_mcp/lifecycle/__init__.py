"""Lifecycle records written by hook callbacks."""

from .models import EMPTY_RECORD, LifecycleRecord, LifecycleState, Subtask
from .parser import lifecycle_path, merge_lifecycle, parse_lifecycle, read_lifecycle

__all__ = [
    "EMPTY_RECORD",
    "LifecycleRecord",
    "LifecycleState",
    "Subtask",
    "lifecycle_path",
    "merge_lifecycle",
    "parse_lifecycle",
    "read_lifecycle",
]
