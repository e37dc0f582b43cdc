"""Ledger transaction model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rivercafe.core.money import from_cents
from rivercafe.core.timeutils import utcnow
from rivercafe.db.base import Base


class TransactionType(str, Enum):
    TOPUP = "topup"
    ORDER = "order"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"
    RECONCILIATION = "reconciliation"


class Transaction(Base):
    """One applied balance change.

    ``balance_after_cents == balance_before_cents + amount_cents`` always holds;
    rows are never updated except for the reconciliation columns.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    related_order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    # Reconciliation metadata
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reconcile_note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    @property
    def balance_before(self) -> Decimal:
        return from_cents(self.balance_before_cents)

    @property
    def balance_after(self) -> Decimal:
        return from_cents(self.balance_after_cents)


# Forward references
from rivercafe.models.user import User
