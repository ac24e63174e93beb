from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, HTTPException, Request, status

from .models import Role, UserRecord
from .portal import Portal

USER_COOKIE = "userId"
ADMIN_COOKIE = "adminId"


@dataclass
class Identity:
    kind: Role
    id: str
    record: UserRecord


def get_portal(request: Request) -> Portal:
    return request.app.state.portal


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "127.0.0.1"


def require_user(
    request: Request,
    user_id: Optional[str] = Cookie(default=None, alias=USER_COOKIE),
) -> Identity:
    """Resolve the signed-in user from the userId cookie; 401 otherwise."""
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated")
    user = get_portal(request).users.find_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown session")
    return Identity(kind=Role.USER, id=user_id, record=user)


def require_admin(
    request: Request,
    admin_id: Optional[str] = Cookie(default=None, alias=ADMIN_COOKIE),
) -> Identity:
    """Resolve the signed-in admin from the adminId cookie; 401 otherwise."""
    if not admin_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated")
    admin = get_portal(request).users.find_by_id(admin_id)
    if admin is None or admin.get("role") != Role.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized subject")
    return Identity(kind=Role.ADMIN, id=admin_id, record=admin)
