"""Process liveness detection."""

from .checker import (
    FakeProcessTable,
    LivenessChecker,
    LivenessQueryError,
    ProcessInfo,
    PsProcessTable,
)

__all__ = [
    "FakeProcessTable",
    "LivenessChecker",
    "LivenessQueryError",
    "ProcessInfo",
    "PsProcessTable",
]
