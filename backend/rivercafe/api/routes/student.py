"""
Student API Endpoints
Menu, ordering and the student's own history
"""

from typing import List, Optional

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import select

from rivercafe.core.errors import NotFound
from rivercafe.core.rbac import RequireStudent
from rivercafe.core.responses import client_ip, ok_response
from rivercafe.db.session import DbSession
from rivercafe.models import Order, User
from rivercafe.schemas.catalog import OrderingWindowOut, ProductOut
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.ledger import TransactionOut
from rivercafe.schemas.order import OrderOut
from rivercafe.schemas.user import UserOut
from rivercafe.services.catalog_service import CatalogService
from rivercafe.services.ledger_service import LedgerService
from rivercafe.services.order_placement_service import OrderPlacementService
from rivercafe.services.ordering_window_service import is_ordering_open


router = APIRouter()


class OrderLineIn(CamelModel):
    product_id: int
    qty: int = 1
    notes: Optional[str] = None


class PlaceOrderRequest(CamelModel):
    items: List[OrderLineIn] = []


def _placement_response(result) -> dict:
    return ok_response(
        order=OrderOut.model_validate(result.order),
        tx=TransactionOut.model_validate(result.tx) if result.tx is not None else None,
    )


def _menu(db, special: bool) -> dict:
    catalog = CatalogService(db)
    windows = catalog.list_windows(special=special, active_only=True)
    return ok_response(
        products=[ProductOut.model_validate(p) for p in catalog.list_products(special=special, available_only=True)],
        windows=[OrderingWindowOut.model_validate(w) for w in windows],
        orderingOpen=is_ordering_open(windows),
    )


@router.get("/me")
def me(db: DbSession, actor: RequireStudent):
    user = db.get(User, actor.id)
    if user is None:
        raise NotFound("User not found")
    return ok_response(user=UserOut.model_validate(user))


@router.get("/menu")
def menu(db: DbSession, actor: RequireStudent):
    """Regular menu with its ordering windows."""
    return _menu(db, special=False)


@router.get("/special-menu")
def special_menu(db: DbSession, actor: RequireStudent):
    return _menu(db, special=True)


@router.post("/place-order", status_code=status.HTTP_201_CREATED)
def place_order(payload: PlaceOrderRequest, request: Request, db: DbSession, actor: RequireStudent):
    """Place a regular order and pay for it from the balance."""
    result = OrderPlacementService(db).place_order(
        actor.id, payload.items, ip_address=client_ip(request)
    )
    return _placement_response(result)


@router.post("/special-order", status_code=status.HTTP_201_CREATED)
def place_special_order(payload: PlaceOrderRequest, request: Request, db: DbSession, actor: RequireStudent):
    """Place a special-menu order for a single category."""
    result = OrderPlacementService(db).place_special_order(
        actor.id, payload.items, ip_address=client_ip(request)
    )
    return _placement_response(result)


@router.get("/orders")
def my_orders(db: DbSession, actor: RequireStudent, limit: int = Query(default=50, ge=1, le=200)):
    orders = db.scalars(
        select(Order)
        .where(Order.user_id == actor.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
    ).all()
    return ok_response(orders=[OrderOut.model_validate(o) for o in orders])


@router.get("/transactions")
def my_transactions(db: DbSession, actor: RequireStudent, limit: Optional[int] = Query(default=None, ge=1)):
    rows = LedgerService(db).statement(actor.id, limit=limit)
    return ok_response(transactions=[TransactionOut.model_validate(t) for t in rows])
