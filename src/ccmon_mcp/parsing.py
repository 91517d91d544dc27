"""Tagged results for reading files written by external processes."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Malformed:
    reason: str


@dataclass(frozen=True, slots=True)
class Absent:
    pass


ParseResult = Union[Parsed[T], Malformed, Absent]


def is_safe_session_id(session_id: str) -> bool:
    """Whether a session id can name files inside the monitor directory."""

    return bool(session_id) and not session_id.startswith(".") and "/" not in session_id and os.sep not in session_id


__all__ = ["Absent", "Malformed", "ParseResult", "Parsed", "is_safe_session_id"]
