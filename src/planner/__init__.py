"""
Planner data-access layer.

Owner-scoped services for tasks, task lists, calendars, events, tags and
attachments over SQLite, with a thin FastAPI application in ``planner.main``.
"""

from .context import ServiceContext
from .errors import AuthorizationError, ErrorKind, NotFoundError, ServiceError, ValidationError
from .factory import ServiceRegistry, build_services

__all__ = [
    "AuthorizationError",
    "ErrorKind",
    "NotFoundError",
    "ServiceContext",
    "ServiceError",
    "ServiceRegistry",
    "ValidationError",
    "build_services",
]
