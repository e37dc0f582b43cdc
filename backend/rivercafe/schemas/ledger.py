"""Ledger transaction schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rivercafe.models.ledger import TransactionType
from rivercafe.schemas.common import CamelModel


class TransactionOut(CamelModel):
    id: int
    user_id: int
    type: TransactionType
    amount: float
    balance_before: float
    balance_after: float
    related_order_id: Optional[int] = None
    note: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime
    reconciled: bool = False
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[int] = None
    reconcile_note: Optional[str] = None
