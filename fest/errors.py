"""Structured error types for festival progress tracking.

Every error carries a category code, a message, the operation that failed
and a mapping of context fields, so callers can report failures without
parsing message strings.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

ERR_NOT_FOUND = "NOT_FOUND"
ERR_VALIDATION = "VALIDATION"
ERR_IO = "IO"
ERR_PARSE = "PARSE"
ERR_CANCELLED = "CANCELLED"
ERR_INTERNAL = "INTERNAL"


class FestError(Exception):
    """Base error for the fest package."""

    code = ERR_INTERNAL

    def __init__(
        self,
        message: str,
        *,
        op: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **fields: Any,
    ) -> None:
        """
        Args:
            message: human readable description
            op: name of the operation that failed
            cause: underlying exception, if any
            fields: context values (paths, ids, offending values)
        """
        super().__init__(message)
        self.message = message
        self.op = op
        self.cause = cause
        self.fields: Dict[str, Any] = dict(fields)

    def __str__(self) -> str:
        parts = []
        if self.op:
            parts.append(self.op)
        parts.append(self.message)
        if self.cause is not None:
            parts.append(str(self.cause))
        return ": ".join(parts)

    def with_op(self, op: str) -> "FestError":
        """Set the operation name."""
        self.op = op
        return self

    def with_field(self, key: str, value: Any) -> "FestError":
        """Attach a context field."""
        self.fields[key] = value
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.op:
            data["op"] = self.op
        if self.cause is not None:
            data["cause"] = str(self.cause)
        if self.fields:
            data["fields"] = {key: _jsonable(value) for key, value in self.fields.items()}
        return data


class NotFoundError(FestError):
    """A requested record does not exist."""

    code = ERR_NOT_FOUND


class ValidationError(FestError):
    """Input was rejected before any mutation took place."""

    code = ERR_VALIDATION


class StorageIOError(FestError):
    """Reading or writing the filesystem failed."""

    code = ERR_IO


class ParseError(FestError):
    """A stored payload could not be decoded."""

    code = ERR_PARSE


class OperationCancelled(FestError):
    """The caller's cancellation token fired.

    Mutations already applied in memory are not rolled back; callers must not
    persist state after receiving this error.
    """

    code = ERR_CANCELLED


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
