from __future__ import annotations

import uuid
from dataclasses import dataclass, field


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ServiceContext:
    """
    Authorization context threaded through every service operation.

    - user_id: the authenticated caller; every owner predicate is built from it
    - request_id: correlation id copied into service log lines
    """

    user_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
