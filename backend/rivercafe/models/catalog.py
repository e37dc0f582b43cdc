"""Menu products and ordering windows."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rivercafe.core.money import from_cents
from rivercafe.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """A menu product. Special products are only sold through special orders."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_special: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def price(self) -> Decimal:
        return from_cents(self.price_cents)


class OrderingWindow(Base, TimestampMixin):
    """Recurring interval during which ordering is permitted.

    ``days_of_week`` holds 0 (Sunday) .. 6 (Saturday); an empty list means
    every day.  ``category`` of NULL applies the window to every category.
    """

    __tablename__ = "ordering_windows"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    days_of_week: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    end_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_special: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
