from datetime import datetime

from beanie import PydanticObjectId
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from registrar.core.audit import log_event
from registrar.core.config import get_settings
from registrar.core.exceptions import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError
from registrar.core.logging import get_logger
from registrar.models.user import User, UserRole

log = get_logger(__name__)


def verify_google_id_token(token: str) -> dict:
    """Verify Google ID token; return decoded claims (sub, email, name, picture, hd)."""
    settings = get_settings()
    try:
        claims = id_token.verify_oauth2_token(
            token,
            google_requests.Request(),
            settings.google_client_id,
        )
    except ValueError as e:
        raise UnauthorizedError(f"Invalid Google token: {e}") from e
    domain = settings.google_hosted_domain
    if domain and claims.get("hd") != domain:
        raise ForbiddenError(f"Sign in with your @{domain} account")
    return claims


async def upsert_user_from_google(claims: dict) -> User:
    google_sub = claims.get("sub")
    if not google_sub:
        raise BadRequestError("Missing sub in token")
    email = claims.get("email") or ""
    name = claims.get("name") or ""
    picture = claims.get("picture")

    user = await User.find_one(User.google_sub == google_sub)
    if user:
        user.email = email
        user.name = name
        user.picture = picture
        user.last_login_at = datetime.utcnow()
        user.updated_at = datetime.utcnow()
        await user.save()
        log.info("user_login", user_id=str(user.id), email=user.email)
        await log_event(str(user.id), "user_login", "user", str(user.id), {"email": user.email})
    else:
        user = User(
            google_sub=google_sub,
            email=email,
            name=name,
            picture=picture,
            last_login_at=datetime.utcnow(),
        )
        await user.insert()
        log.info("user_created", user_id=str(user.id), email=user.email)
        await log_event(str(user.id), "user_created", "user", str(user.id), {"email": user.email})
    return user


def session_payload_for_user(user: User) -> dict:
    return {"user_id": str(user.id), "session_version": user.session_version}


async def logout(user: User) -> None:
    """Bump session_version so every outstanding cookie for this user stops working."""
    user.session_version += 1
    user.updated_at = datetime.utcnow()
    await user.save()
    log.info("user_logout", user_id=str(user.id))


async def set_role(
    actor: User,
    user_id: PydanticObjectId,
    role: UserRole,
    student_number: str | None = None,
) -> User:
    """Registrar admin assigns roles. Role changes invalidate the target's sessions."""
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.id == actor.id and role != actor.role:
        raise BadRequestError("You cannot change your own role")
    old_role = user.role
    user.role = role
    if student_number is not None:
        user.student_number = student_number.strip() or None
    if old_role != role:
        user.session_version += 1
    user.updated_at = datetime.utcnow()
    await user.save()
    log.info("user_role_updated", user_id=str(user.id), old_role=old_role.value, new_role=role.value)
    await log_event(
        str(actor.id),
        "user_role_updated",
        "user",
        str(user.id),
        {"old_role": old_role.value, "new_role": role.value},
    )
    return user
