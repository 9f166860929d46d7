"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request

from registrar.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from registrar.core.security import load_session_cookie
from registrar.models.user import STAFF_ROLES, User, UserRole

SESSION_COOKIE_NAME = "registrar_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    user = await User.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: current user must hold one of roles."""

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError("You do not have access to this resource")
        return user

    return dependency


require_student = require_roles(UserRole.STUDENT)
require_cashier = require_roles(UserRole.CASHIER)
require_staff = require_roles(*STAFF_ROLES)
require_registrar_admin = require_roles(UserRole.REGISTRAR_ADMIN)


def object_id_or_404(value: str, what: str = "Resource") -> PydanticObjectId:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError) as e:
        raise NotFoundError(f"{what} not found") from e
