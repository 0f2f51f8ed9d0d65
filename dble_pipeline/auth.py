"""
Caller identification for pipeline routes.

Authorization is handled upstream; routes only need to know who is acting
so the engine can record actor ids and timeline authors.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"
USER_NAME_HEADER = "X-User-Name"

DEFAULT_ROLE = "fde"


@dataclass
class Actor:
    user_id: str
    role: str = DEFAULT_ROLE
    name: Optional[str] = None


def get_actor(request: Request) -> Actor:
    """
    Require and return the acting user from the request headers.
    Raises 401 if no user id is present.
    """
    user_id = request.headers.get(USER_ID_HEADER)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User identification required.",
        )
    role = (request.headers.get(USER_ROLE_HEADER) or DEFAULT_ROLE).lower()
    return Actor(user_id=user_id, role=role, name=request.headers.get(USER_NAME_HEADER))
