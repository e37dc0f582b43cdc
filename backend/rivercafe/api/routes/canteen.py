"""
Canteen API Endpoints
Prep-station unit tracking, order card controls and the pickup counter
"""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Query, Request

from rivercafe.core.errors import ValidationError
from rivercafe.core.rbac import RequireCanteen
from rivercafe.core.responses import client_ip, ok_response
from rivercafe.db.session import DbSession
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.order import OrderOut, PrepOrderOut
from rivercafe.services.collection_service import CollectionService
from rivercafe.services.fulfillment_service import FulfillmentService


router = APIRouter()


# ========== SCHEMAS ==========

class PrepareRequest(CamelModel):
    product_name: str
    action: Literal["prepare", "unprepare"] = "prepare"


class OrderPatchRequest(CamelModel):
    action: Literal["incPrepared", "decPrepared", "setPrepBy", "setCollectedBy", "setStatus"]
    status: Optional[str] = None
    collected_by_reg_number: Optional[str] = None


class CollectRequest(CamelModel):
    order_id: Optional[int] = None
    code: Optional[str] = None
    reg_number: Optional[str] = None


# ========== PREPARATION ==========

@router.post("/product/prepare")
def prepare_product(payload: PrepareRequest, request: Request, db: DbSession, actor: RequireCanteen):
    """Prepare (FIFO) or unprepare (LIFO) one unit of a product."""
    service = FulfillmentService(db)
    if payload.action == "prepare":
        order = service.prepare_one_unit(payload.product_name, actor.id, client_ip(request))
    else:
        order = service.unprepare_one_unit(payload.product_name, actor.id, client_ip(request))
    return ok_response(order=PrepOrderOut.model_validate(order))


@router.patch("/order/{order_id}")
def patch_order(order_id: int, payload: OrderPatchRequest, request: Request,
                db: DbSession, actor: RequireCanteen):
    """Order card controls."""
    service = FulfillmentService(db)
    ip = client_ip(request)

    if payload.action == "incPrepared":
        order = service.set_item_prepared_delta(order_id, +1, actor.id, ip)
    elif payload.action == "decPrepared":
        order = service.set_item_prepared_delta(order_id, -1, actor.id, ip)
    elif payload.action == "setPrepBy":
        order = service.set_prep_by(order_id, actor.id, ip)
    elif payload.action == "setCollectedBy":
        order = service.set_collected_by(order_id, payload.collected_by_reg_number, actor.id, ip)
    else:
        if not payload.status:
            raise ValidationError("status is required for setStatus")
        order = service.set_status(
            order_id, payload.status, actor.id,
            collected_by_reg_number=payload.collected_by_reg_number, ip_address=ip,
        )
    return ok_response(order=OrderOut.model_validate(order))


@router.get("/orders")
def active_orders(db: DbSession, actor: RequireCanteen):
    """Kitchen board: every live order, oldest first."""
    orders = FulfillmentService(db).active_orders()
    return ok_response(orders=[OrderOut.model_validate(o) for o in orders])


# ========== PICKUP COUNTER ==========

@router.get("/process")
def find_collectable(
    db: DbSession,
    actor: RequireCanteen,
    code: Optional[str] = None,
    on_date: Optional[date] = Query(default=None, alias="date"),
    q: Optional[str] = None,
):
    """Look up one order by pickup code, or list orders waiting for pickup."""
    service = CollectionService(db)
    if code:
        order = service.lookup_by_code(code)
        return ok_response(order=OrderOut.model_validate(order))
    orders = service.list_collectable(on_date=on_date, q=q)
    return ok_response(orders=[OrderOut.model_validate(o) for o in orders])


@router.post("/process")
def collect(payload: CollectRequest, request: Request, db: DbSession, actor: RequireCanteen):
    """Mark an order collected by id, or by pickup code."""
    result = CollectionService(db).collect(
        order_id=payload.order_id,
        code=payload.code,
        collected_by_reg_number=payload.reg_number,
        actor_id=actor.id,
        ip_address=client_ip(request),
    )
    return ok_response(
        message="Order marked collected",
        orderId=result.order.id,
        collectedAt=result.order.collected_at,
        issuedToName=result.issued_to_name,
    )
