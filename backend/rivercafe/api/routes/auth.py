"""Authentication routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Request, Response

from rivercafe.core.config import settings
from rivercafe.core.errors import NotAuthenticated, NotFound
from rivercafe.core.rate_limit import limiter
from rivercafe.core.rbac import CurrentActor
from rivercafe.core.responses import client_ip, ok_response
from rivercafe.core.security import COOKIE_ACCESS_NAME, create_access_token
from rivercafe.db.session import DbSession
from rivercafe.models import User
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.user import UserOut
from rivercafe.services.account_service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequest(CamelModel):
    """Email or registration number plus password."""
    identifier: str
    password: str


class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = None
    new_password: str


@router.post("/login")
@limiter.limit(settings.login_rate_limit)
def login(request: Request, response: Response, login_request: LoginRequest, db: DbSession):
    """Authenticate and return a JWT; the token is also set as an httpOnly cookie."""
    user = AccountService(db).authenticate(
        login_request.identifier, login_request.password, ip_address=client_ip(request)
    )
    if user is None:
        raise NotAuthenticated("Invalid credentials")

    token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
    response.set_cookie(
        COOKIE_ACCESS_NAME,
        token,
        httponly=True,
        samesite="lax",
        secure=not settings.debug,
        max_age=settings.access_token_expire_minutes * 60,
    )
    return ok_response(
        accessToken=token,
        tokenType="bearer",
        user=UserOut.model_validate(user),
        requirePasswordReset=user.require_password_reset,
    )


@router.post("/logout")
def logout(response: Response, actor: CurrentActor):
    response.delete_cookie(COOKIE_ACCESS_NAME)
    logger.info(f"User logged out (ID: {actor.id})")
    return ok_response(message="Logged out")


@router.get("/me")
def me(db: DbSession, actor: CurrentActor):
    user = db.get(User, actor.id)
    if user is None:
        raise NotFound("User not found")
    return ok_response(user=UserOut.model_validate(user))


@router.post("/change-password")
def change_password(payload: ChangePasswordRequest, request: Request, db: DbSession, actor: CurrentActor):
    """Change the caller's own password and clear the forced-reset flag."""
    user = AccountService(db).change_password(
        actor.id, payload.current_password, payload.new_password, ip_address=client_ip(request)
    )
    return ok_response(message="Password changed", user=UserOut.model_validate(user))
