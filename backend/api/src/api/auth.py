"""Caller identity for protected endpoints.

API Gateway validates the JWT before the request reaches this app and
passes the identity through headers: ``x-user-sub`` carries the subject
and ``x-user-groups`` a comma-separated list of groups.
"""

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_401_UNAUTHORIZED

from rentals.models import ForbiddenError

ADMIN_GROUP = "admin"


class CurrentUser(BaseModel):
    """Authenticated caller."""

    user_id: str
    groups: list[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_GROUP in self.groups


def get_current_user(
    x_user_sub: str | None = Header(default=None),
    x_user_groups: str | None = Header(default=None),
) -> CurrentUser:
    """Resolve the caller from API Gateway headers.

    Raises:
        HTTPException: 401 when no identity was passed
    """
    if not x_user_sub:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Authentication required")
    groups = [g.strip() for g in (x_user_groups or "").split(",") if g.strip()]
    return CurrentUser(user_id=x_user_sub, groups=groups)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Restrict an endpoint to administrators."""
    if not user.is_admin:
        raise ForbiddenError("Administrator access required")
    return user
