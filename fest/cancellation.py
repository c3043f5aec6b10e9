"""Cooperative cancellation for long-running festival walks."""

from __future__ import annotations

from typing import Optional

from .errors import OperationCancelled


class CancellationToken:
    """Flag checked at the start of every operation and on each loop iteration.

    Nothing is interrupted preemptively: work stops at the next ``check`` call.
    """

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Request cancellation."""
        self._cancelled = True
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def check(self, op: str) -> None:
        """Raise ``OperationCancelled`` if cancellation was requested."""
        if self._cancelled:
            raise OperationCancelled(self._reason or "operation cancelled", op=op)


def ensure_token(ctx: Optional[CancellationToken]) -> CancellationToken:
    """Return ``ctx`` or a fresh token that is never cancelled."""
    return ctx if ctx is not None else CancellationToken()
