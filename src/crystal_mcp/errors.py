"""Errors surfaced to callers of the coordination layer."""

from __future__ import annotations

from dataclasses import dataclass


class CrystalError(Exception):
    """Base class for caller-facing errors."""


@dataclass(slots=True, frozen=True)
class NotInitializedError(CrystalError):
    """Raised when an operation runs before its repository was initialized."""

    operation: str
    hint: str = "Call crystal.initialize for the repository first."

    def __str__(self) -> str:
        return f"{self.operation} called before initialization. {self.hint}"


@dataclass(slots=True, frozen=True)
class QueueNotInitializedError(NotInitializedError):
    """Raised when queue operations run before QueueManager.initialize."""
