"""Exception types raised by Confidant components."""

from __future__ import annotations

from typing import List, Optional


class ConfidantError(Exception):
    """Base class for all Confidant errors."""


class PersistenceError(ConfidantError):
    """A storage backend call failed. In-memory state is unaffected."""

    def __init__(self, message: str, *, operation: str = "", key: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.key = key


class MessageFormatError(ConfidantError):
    """Input messages could not be validated."""

    def __init__(self, message: str, field_errors: Optional[List[str]] = None):
        super().__init__(message)
        self.field_errors = field_errors or []


class DetectorOutputError(ConfidantError):
    """Detector output could not be parsed at all."""
