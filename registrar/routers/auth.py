from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from registrar.core.config import get_settings
from registrar.core.security import SESSION_MAX_AGE, create_session_cookie
from registrar.deps import SESSION_COOKIE_NAME, get_current_user
from registrar.models.user import User
from registrar.services import users as user_service

router = APIRouter()


class GoogleAuthRequest(BaseModel):
    id_token: str


def user_to_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "picture": user.picture,
        "role": user.role.value,
        "student_number": user.student_number,
    }


@router.post("/google")
async def auth_google(body: GoogleAuthRequest, response: Response):
    """Exchange Google ID token for session; set httpOnly cookie."""
    claims = user_service.verify_google_id_token(body.id_token)
    user = await user_service.upsert_user_from_google(claims)
    payload = user_service.session_payload_for_user(user)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie(payload),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=get_settings().env == "production",
        samesite="lax",
        path="/",
    )
    return {"user": user_to_dict(user)}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Return current user. Requires session cookie."""
    return user_to_dict(user)


@router.post("/logout")
async def auth_logout(response: Response, user: User = Depends(get_current_user)):
    await user_service.logout(user)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"status": "ok"}
