from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from .context import ServiceContext
from .factory import ServiceRegistry


# PUBLIC_INTERFACE
def get_context(
    x_user_id: Optional[str] = Header(default=None, description="Authenticated user id"),
    x_request_id: Optional[str] = Header(default=None, description="Correlation id; generated when absent"),
) -> ServiceContext:
    """
    Build the authorization context from headers set by the upstream auth layer.

    Raises:
        HTTPException(401) when no user id is supplied.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return ServiceContext(user_id=x_user_id.strip(), request_id=x_request_id or uuid.uuid4().hex)


# PUBLIC_INTERFACE
def get_services(request: Request) -> ServiceRegistry:
    """Return the registry built once by ``create_app``."""
    return request.app.state.services
