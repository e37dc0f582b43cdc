"""Order schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from rivercafe.models.order import OrderKind, OrderStatus
from rivercafe.schemas.common import CamelModel


class OrderItemOut(CamelModel):
    product_id: Optional[int] = None
    name: str
    unit_price: float
    qty: int
    prepared_count: int
    notes: Optional[str] = None


class OrderOut(CamelModel):
    """Full order view."""

    id: int
    code: str
    user_id: Optional[int] = None
    student_name: Optional[str] = None
    reg_number: Optional[str] = None
    external: bool
    kind: OrderKind
    category: Optional[str] = None
    total: float
    status: OrderStatus
    prepared_count: int
    total_qty: int
    auto_prepared: bool = False
    items: List[OrderItemOut]
    prep_by: Optional[int] = None
    collected_by_reg_number: Optional[str] = None
    collected_by_operator: Optional[int] = None
    collected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    issued_to_name: Optional[str] = None
    remarks: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class PrepItemOut(CamelModel):
    name: str
    qty: int
    prepared_count: int


class PrepOrderOut(CamelModel):
    """Compact order snapshot for prep-station responses."""

    id: int
    code: str
    status: OrderStatus
    prepared_count: int
    items: List[PrepItemOut]


class ExternalCodeOut(CamelModel):
    code: str
    order_id: Optional[int] = None
    issued_to_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    used: bool
    used_at: Optional[datetime] = None
    used_by_reg_number: Optional[str] = None
    issued_by: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
