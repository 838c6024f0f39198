"""
Typed errors raised by the planner services.

Every error carries an explicit ``kind`` so callers branch on the kind
rather than on message text.  ``str(error)`` still renders the short
machine-parseable prefix (``VALIDATION_ERROR: ...``) for log lines and
clients that only see the message.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


_PREFIXES = {
    ErrorKind.VALIDATION: "VALIDATION_ERROR",
    ErrorKind.AUTHORIZATION: "AUTHORIZATION_ERROR",
    ErrorKind.NOT_FOUND: "NOT_FOUND",
}


# PUBLIC_INTERFACE
class ServiceError(Exception):
    """Base class for errors raised by the entity services."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    @property
    def prefix(self) -> Optional[str]:
        return _PREFIXES.get(self.kind)

    def __str__(self) -> str:
        if self.prefix is None:
            return self.message
        return f"{self.prefix}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class ValidationError(ServiceError):
    """Bad input, raised before any write."""

    kind = ErrorKind.VALIDATION


class AuthorizationError(ServiceError):
    """The ownership probe failed: the row is missing or belongs to someone else."""

    kind = ErrorKind.AUTHORIZATION


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
