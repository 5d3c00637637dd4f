"""
Structured exception types for the session snapshot engine.

Every engine error carries a ``details`` mapping so that tools can surface
machine-readable context alongside the message. Per-item failures inside
replay and export loops are recorded as :class:`ErrorResult` entries rather
than raised.
"""

from collections.abc import Awaitable
from typing import Any, TypeVar

T = TypeVar("T")


class SnapshotEngineError(Exception):
    """Base exception for snapshot capture/restore errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(SnapshotEngineError):
    """Malformed cookie, record or value. Recoverable: skip the item."""

    pass


class SnapshotFormatError(ValidationError):
    """An imported document is not a usable snapshot."""

    pass


class NotFoundError(SnapshotEngineError):
    """Target record absent (cookie, catalog entry)."""

    pass


class BackendError(SnapshotEngineError):
    """I/O failure inside a mirror or the execution facility."""

    pass


class TargetUnavailableError(BackendError):
    """The browsing context is gone; nothing further can be replayed."""

    pass


class QuotaExceededError(SnapshotEngineError):
    """Persisting a record would exceed the size ceiling or catalog quota."""

    pass


class PersistenceExhaustedError(SnapshotEngineError):
    """Every rung of the degrade ladder failed to persist."""

    pass


class ReplayTimeoutError(SnapshotEngineError):
    """Database replay did not settle before the fallback timer fired."""

    pass


class RestoreAbortedError(SnapshotEngineError):
    """Restore stopped at the domain check."""

    pass


class ExportBlockedError(SnapshotEngineError):
    """The credential gate refused to let a snapshot leave the system."""

    pass


class TargetBusyError(SnapshotEngineError):
    """Another capture or restore is running on the same target."""

    pass


# Structured error result type
class ErrorResult:
    """Structured error result for per-item failure reporting."""

    def __init__(self, error: Exception, context: str = "", recoverable: bool = False):
        self.error = error
        self.context = context
        self.recoverable = recoverable
        self.error_type = type(error).__name__
        self.message = str(error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "context": self.context,
            "recoverable": self.recoverable,
            "details": getattr(self.error, "details", {}),
        }


async def guarded(awaitable: Awaitable[T], action: str, **details: Any) -> T:
    """
    Await a collaborator call, mapping unexpected failures to BackendError.

    Engine errors raised by the collaborator pass through unchanged so that
    ``TargetUnavailableError`` keeps its meaning.
    """
    try:
        return await awaitable
    except SnapshotEngineError:
        raise
    except Exception as exc:
        raise BackendError(
            f"{action} failed: {exc}", {"action": action, **details}
        ) from exc
