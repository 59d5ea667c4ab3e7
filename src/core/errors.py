# core/errors.py
from __future__ import annotations

from typing import Optional


class ControlError(Exception):
    """Base class for every failure the control layer reports to callers."""


class InvalidArgument(ControlError):
    """Unknown or out-of-range identifier (playlist, entry, field name...)."""


class NotFound(ControlError):
    """The referenced entity does not exist (dead native handle, nothing playing)."""


class EngineCallFailed(ControlError):
    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message if code is None else f"{message} (code {code})")
        self.code = code


class PersistenceError(ControlError):
    """Playlist store read/write failed."""


class Timeout(ControlError):
    """A bounded engine call exceeded its allowance."""
