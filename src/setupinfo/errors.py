from __future__ import annotations

from typing import Optional


class SetupInfoError(Exception):
    """Base class for extraction failures. Carries the offending path."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        message = super().__str__()
        if self.path and self.path not in message:
            return f"{message} ({self.path})"
        return message


class NotFoundError(SetupInfoError, FileNotFoundError):
    pass


class UnsupportedFormatError(SetupInfoError, ValueError):
    pass


class DatabaseError(SetupInfoError):
    pass


class FormatError(SetupInfoError):
    pass
