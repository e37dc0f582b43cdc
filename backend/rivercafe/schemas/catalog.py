"""Product, ordering window and setting schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from rivercafe.schemas.common import CamelModel


class ProductOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    category: Optional[str] = None
    available: bool
    is_special: bool


class OrderingWindowOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    days_of_week: List[int]
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: Optional[str] = None
    active: bool
    category: Optional[str] = None
    is_special: bool
    priority: int


class SettingOut(CamelModel):
    key: str
    value: Any = None
    description: Optional[str] = None
    updated_at: Optional[datetime] = None
