"""Errors raised by the progression engine before anything is persisted."""

from __future__ import annotations


class ValidationError(ValueError):
    """Malformed caller input: out-of-range day, empty sequence, oversized names."""

    def __init__(self, message: str, field: str = "", reason: str = ""):
        self.field = field
        self.reason = reason or message
        super().__init__(message)
