"""Caller-supplied timeout and cooperative cancellation for blocking stages."""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

from envsnap.errors import CancelledError, OperationTimeoutError


@dataclass(frozen=True, slots=True)
class Deadline:
    """Absolute expiry (monotonic clock) plus a shared cancel event.

    Long-running operations call :meth:`check` between units of work; a
    fetch also passes :meth:`remaining` to the socket so a stalled read
    cannot outlive the deadline.
    """

    expires_at: float | None = None
    cancel: threading.Event = field(default_factory=threading.Event)
    parent: Deadline | None = None

    @classmethod
    def after(
        cls,
        timeout: float | None,
        *,
        cancel: threading.Event | None = None,
    ) -> Deadline:
        expires_at = None if timeout is None else time.monotonic() + timeout
        return cls(expires_at=expires_at, cancel=cancel if cancel is not None else threading.Event())

    def child(self) -> Deadline:
        """Same expiry, own cancel event; cancelling the child leaves this one untouched."""
        return Deadline(expires_at=self.expires_at, parent=self)

    def cancelled(self) -> bool:
        return self.cancel.is_set() or (self.parent is not None and self.parent.cancelled())

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, *, operation: str, context: Mapping[str, str] | None = None) -> None:
        details = {"operation": operation, **dict(context or {})}
        if self.cancelled():
            raise CancelledError(f"{operation} was cancelled.", context=details)
        if self.expired():
            raise OperationTimeoutError(
                f"{operation} exceeded its deadline.",
                hint="Raise the timeout or retry once the source responds.",
                context=details,
            )


__all__ = ["Deadline"]
