"""User model."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rivercafe.core.money import from_cents
from rivercafe.db.base import Base, TimestampMixin


class UserRole(str, Enum):
    """User roles for RBAC."""

    ADMIN = "admin"
    CANTEEN = "canteen"
    STUDENT = "student"
    IT = "it"
    INVENTORY = "inventory"
    EXTERNAL = "external"


class User(Base, TimestampMixin):
    """Canteen account: students carry a stored-value balance, staff log in to work."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)
    reg_number: Mapped[Optional[str]] = mapped_column(String(64), unique=True, index=True, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, values_callable=lambda e: [m.value for m in e]),
        default=UserRole.STUDENT,
        nullable=False,
    )
    # Written only by the ledger engine
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    require_password_reset: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def balance(self) -> Decimal:
        return from_cents(self.balance_cents or 0)
