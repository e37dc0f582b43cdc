"""
IT API Endpoints
Account provisioning, password resets and activation
"""

from typing import Optional

from fastapi import APIRouter, Request, status

from rivercafe.core.rbac import RequireIT
from rivercafe.core.responses import client_ip, ok_response
from rivercafe.db.session import DbSession
from rivercafe.models.user import UserRole
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.user import UserOut
from rivercafe.services.account_service import AccountService


router = APIRouter()


class CreateUserRequest(CamelModel):
    name: str
    role: str = UserRole.STUDENT.value
    email: Optional[str] = None
    reg_number: Optional[str] = None
    is_active: bool = True


class ResetPasswordRequest(CamelModel):
    email_or_reg: Optional[str] = None
    force_change: bool = True


@router.post("/create-user", status_code=status.HTTP_201_CREATED)
def create_user(payload: CreateUserRequest, request: Request, db: DbSession, actor: RequireIT):
    """Create an account; the temporary password is returned once."""
    result = AccountService(db).create_user(
        name=payload.name,
        role=payload.role,
        email=payload.email,
        reg_number=payload.reg_number,
        is_active=payload.is_active,
        actor_id=actor.id,
        ip_address=client_ip(request),
    )
    return ok_response(user=UserOut.model_validate(result.user), tempPassword=result.temp_password)


@router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, request: Request, db: DbSession, actor: RequireIT):
    result = AccountService(db).reset_password(
        payload.email_or_reg, force_change=payload.force_change,
        actor_id=actor.id, ip_address=client_ip(request),
    )
    return ok_response(
        message="Password reset",
        user=UserOut.model_validate(result.user),
        tempPassword=result.temp_password,
    )


@router.post("/users/{user_id}/activate")
def activate_user(user_id: int, request: Request, db: DbSession, actor: RequireIT):
    user = AccountService(db).set_active(user_id, True, actor_id=actor.id, ip_address=client_ip(request))
    return ok_response(user=UserOut.model_validate(user))


@router.post("/users/{user_id}/deactivate")
def deactivate_user(user_id: int, request: Request, db: DbSession, actor: RequireIT):
    user = AccountService(db).set_active(user_id, False, actor_id=actor.id, ip_address=client_ip(request))
    return ok_response(user=UserOut.model_validate(user))
