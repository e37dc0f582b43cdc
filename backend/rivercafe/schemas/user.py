"""User schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rivercafe.models.user import UserRole
from rivercafe.schemas.common import CamelModel


class UserOut(CamelModel):
    """User as returned by the API; credential material is never included."""

    id: int
    name: str
    email: Optional[str] = None
    reg_number: Optional[str] = None
    role: UserRole
    balance: float
    is_active: bool
    require_password_reset: bool = False
    created_at: Optional[datetime] = None
