"""Account administration: creation, credentials and activation.

Balances are not touched here; they belong to the ledger service.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rivercafe.core.errors import Conflict, Forbidden, NotFound, ValidationError
from rivercafe.core.security import generate_temp_password, get_password_hash, verify_password
from rivercafe.models import User, UserRole
from rivercafe.services.audit_service import log_action, log_login

logger = logging.getLogger(__name__)
auth_logger = logging.getLogger("auth")

MIN_PASSWORD_LENGTH = 8


@dataclass
class CredentialResult:
    user: User
    temp_password: str


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    def create_user(
        self,
        name: str,
        role: str = UserRole.STUDENT.value,
        email: Optional[str] = None,
        reg_number: Optional[str] = None,
        is_active: bool = True,
        actor_id: Optional[int] = None,
        ip_address: str = "",
    ) -> CredentialResult:
        """Create an account with a temporary password.

        Students must have a registration number, which doubles as their
        first password.  Everyone else gets a random one.  The user is asked
        to change it on first login.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        try:
            user_role = UserRole((role or UserRole.STUDENT.value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")
        email = (email or "").strip().lower() or None
        reg_number = (reg_number or "").strip() or None

        if user_role == UserRole.STUDENT and not reg_number:
            raise ValidationError("regNumber is required for student accounts")

        self._ensure_unique(email, reg_number)

        temp_password = reg_number if user_role == UserRole.STUDENT else generate_temp_password()
        user = User(
            name=name,
            email=email,
            reg_number=reg_number,
            role=user_role,
            is_active=is_active,
            password_hash=get_password_hash(temp_password),
            require_password_reset=True,
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("User already exists")

        log_action(
            action="create_user",
            collection_name="users",
            document_id=user.id,
            actor_id=actor_id,
            changes={"role": user_role.value, "email": email, "regNumber": reg_number},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(user)
        return CredentialResult(user=user, temp_password=temp_password)

    def reset_password(self, identifier: str, force_change: bool = True,
                       actor_id: Optional[int] = None, ip_address: str = "") -> CredentialResult:
        """Issue a new random temporary password for the user found by email or reg number."""
        user = self.find_by_identifier(identifier)
        if user is None:
            raise NotFound("User not found")

        temp_password = generate_temp_password()
        user.password_hash = get_password_hash(temp_password)
        user.require_password_reset = bool(force_change)
        self.db.flush()
        log_action(
            action="reset_password",
            collection_name="users",
            document_id=user.id,
            actor_id=actor_id,
            changes={"forceChange": bool(force_change)},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        return CredentialResult(user=user, temp_password=temp_password)

    def set_active(self, user_id: int, active: bool, actor_id: Optional[int] = None,
                   ip_address: str = "") -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        if not active and actor_id is not None and user.id == actor_id:
            raise ValidationError("You cannot deactivate your own account")
        before = user.is_active
        user.is_active = active
        self.db.flush()
        log_action(
            action="activate_user" if active else "deactivate_user",
            collection_name="users",
            document_id=user.id,
            actor_id=actor_id,
            changes={"isActive": [before, active]},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(user)
        return user

    def change_password(self, user_id: int, current_password: Optional[str], new_password: str,
                        ip_address: str = "") -> User:
        if not new_password or len(new_password.strip()) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        if user.password_hash:
            if not current_password:
                raise ValidationError("Current password required")
            if not verify_password(current_password, user.password_hash):
                raise Forbidden("Current password is incorrect")

        user.password_hash = get_password_hash(new_password)
        user.require_password_reset = False
        self.db.flush()
        log_action(
            action="change_password",
            collection_name="users",
            document_id=user.id,
            actor_id=user.id,
            changes={"via": "self"},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        return user

    def authenticate(self, identifier: str, password: str, ip_address: str = "") -> Optional[User]:
        """Return the active user matching the credentials, or None."""
        user = self.find_by_identifier(identifier)
        ok = (
            user is not None
            and user.is_active
            and verify_password(password or "", user.password_hash or "")
        )
        if not ok:
            auth_logger.warning(f"Failed login for {identifier!r} from {ip_address or 'unknown'}")
            log_login(None, identifier, ip_address, success=False, db=self.db)
            self.db.commit()
            return None

        auth_logger.info(f"User {user.id} logged in from {ip_address or 'unknown'}")
        log_login(user.id, identifier, ip_address, success=True, db=self.db)
        self.db.commit()
        return user

    def find_by_identifier(self, identifier: Optional[str]) -> Optional[User]:
        """Look a user up by email (case-insensitive) or registration number."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValidationError("emailOrReg required")
        return self.db.scalars(
            select(User).where(or_(
                func.lower(User.email) == identifier.lower(),
                User.reg_number == identifier,
            ))
        ).first()

    def _ensure_unique(self, email: Optional[str], reg_number: Optional[str]) -> None:
        if email:
            if self.db.scalar(select(User.id).where(func.lower(User.email) == email)):
                raise Conflict("User already exists (conflict on email)")
        if reg_number:
            if self.db.scalar(select(User.id).where(User.reg_number == reg_number)):
                raise Conflict("User already exists (conflict on regNumber)")
