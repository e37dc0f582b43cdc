"""Canteen order models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rivercafe.core.money import from_cents
from rivercafe.core.timeutils import utcnow
from rivercafe.db.base import Base, TimestampMixin, VersionMixin


class OrderStatus(str, Enum):
    """Status of a canteen order."""

    PLACED = "placed"
    PREPARING = "preparing"
    READY = "ready"
    COLLECTED = "collected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (OrderStatus.COLLECTED, OrderStatus.CANCELLED)
COLLECTABLE_STATUSES = (OrderStatus.PREPARING, OrderStatus.READY)


class OrderKind(str, Enum):
    REGULAR = "regular"
    SPECIAL = "special"


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


def item_name_key(name: Optional[str]) -> str:
    """Case-insensitive lookup key for an item name."""
    return (name or "").strip().casefold()


def _default_name_key(context) -> str:
    return item_name_key(context.get_current_parameters().get("name"))


class Order(Base, TimestampMixin, VersionMixin):
    """An order placed by a student, or by staff for a cash customer.

    ``prepared_count`` is the aggregate of the item prepared counts and is
    rewritten together with them; it is never used to decide eligibility.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    reg_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    external: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    kind: Mapped[OrderKind] = mapped_column(
        SQLEnum(OrderKind, values_callable=_enum_values), default=OrderKind.REGULAR, nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, values_callable=_enum_values),
        default=OrderStatus.PLACED,
        nullable=False,
        index=True,
    )
    prepared_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    auto_prepared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    prep_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    collected_by_reg_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    collected_by_operator: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    collected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ordering_window_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("ordering_windows.id", ondelete="SET NULL"), nullable=True
    )
    issued_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    issued_to_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    user: Mapped[Optional["User"]] = relationship("User", foreign_keys=[user_id])

    @property
    def total(self) -> Decimal:
        return from_cents(self.total_cents)

    @property
    def total_qty(self) -> int:
        return sum(item.qty for item in self.items)

    @property
    def student_name(self) -> Optional[str]:
        return self.user.name if self.user is not None else None


class OrderItem(Base):
    """One ordered line; name and price are snapshots taken at order time."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Prep stations match products on this, not on the display name
    name_key: Mapped[str] = mapped_column(
        String(255), default=_default_name_key, nullable=False, index=True
    )
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    prepared_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    @property
    def unit_price(self) -> Decimal:
        return from_cents(self.unit_price_cents)


class ExternalCode(Base):
    """Pickup code issued to a customer without an account."""

    __tablename__ = "external_codes"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    issued_to_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issued_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Flips false -> true exactly once, on first successful collection
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_by_reg_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    order: Mapped[Optional["Order"]] = relationship("Order")


# Forward references
from rivercafe.models.user import User
