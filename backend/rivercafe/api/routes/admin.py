"""
Admin API Endpoints
External (cash) orders, order lookup, catalog, ordering windows and runtime settings
"""

from typing import Any, List, Optional, Union

from fastapi import APIRouter, Query, Request, status

from rivercafe.core.rbac import RequireAdmin
from rivercafe.core.responses import client_ip, ok_response
from rivercafe.db.session import DbSession
from rivercafe.schemas.catalog import OrderingWindowOut, ProductOut, SettingOut
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.order import ExternalCodeOut, OrderOut
from rivercafe.services import settings_service
from rivercafe.services.catalog_service import CatalogService
from rivercafe.services.fulfillment_service import FulfillmentService
from rivercafe.services.order_placement_service import OrderPlacementService


router = APIRouter()


# ========== SCHEMAS ==========

class ExternalLineIn(CamelModel):
    product_id: int
    qty: int = 1
    notes: Optional[str] = None


class ExternalOrderRequest(CamelModel):
    items: List[ExternalLineIn] = []
    issued_to_name: str = ""
    expires_in_minutes: Optional[int] = None
    note: Optional[str] = None


class ProductCreate(CamelModel):
    name: str
    price: Union[float, str, None] = None
    category: Optional[str] = None
    description: Optional[str] = None
    available: bool = True
    is_special: bool = False


class OrderingWindowCreate(CamelModel):
    name: str
    days_of_week: List[int] = []
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: Optional[str] = None
    active: bool = True
    category: Optional[str] = None
    is_special: bool = False
    priority: int = 0
    description: Optional[str] = None


class ProductUpdate(CamelModel):
    name: Optional[str] = None
    price: Union[float, str, None] = None
    category: Optional[str] = None
    description: Optional[str] = None
    available: Optional[bool] = None
    is_special: Optional[bool] = None


class OrderingWindowUpdate(CamelModel):
    name: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    timezone: Optional[str] = None
    active: Optional[bool] = None
    category: Optional[str] = None
    is_special: Optional[bool] = None
    priority: Optional[int] = None
    description: Optional[str] = None


class SettingUpdate(CamelModel):
    value: Any = None
    description: Optional[str] = None


# ========== EXTERNAL ORDERS ==========

@router.post("/external-order", status_code=status.HTTP_201_CREATED)
def create_external_order(payload: ExternalOrderRequest, request: Request, db: DbSession, actor: RequireAdmin):
    """Issue a cash order with a pickup code for a customer without an account."""
    result = OrderPlacementService(db).place_external_order(
        actor.id,
        payload.items,
        issued_to_name=payload.issued_to_name,
        expires_in_minutes=payload.expires_in_minutes,
        note=payload.note,
        ip_address=client_ip(request),
    )
    return ok_response(
        order=OrderOut.model_validate(result.order),
        code=result.order.code,
        externalCode=ExternalCodeOut.model_validate(result.external_code),
    )


@router.get("/external-codes")
def list_external_codes(db: DbSession, actor: RequireAdmin,
                        code_status: str = Query("pending", alias="status"),
                        used: Optional[bool] = None, limit: int = 200):
    """Issued pickup codes; ``status=all`` includes used and expired ones."""
    codes = OrderPlacementService(db).list_external_codes(
        pending_only=code_status != "all", used=used, limit=limit
    )
    return ok_response(codes=[ExternalCodeOut.model_validate(c) for c in codes])


@router.get("/orders/{order_id}")
def get_order(order_id: int, db: DbSession, actor: RequireAdmin):
    order = FulfillmentService(db).get_order(order_id)
    return ok_response(order=OrderOut.model_validate(order))


# ========== CATALOG ==========

@router.get("/products")
def list_products(db: DbSession, actor: RequireAdmin, special: Optional[bool] = None):
    products = CatalogService(db).list_products(special=special)
    return ok_response(products=[ProductOut.model_validate(p) for p in products])


@router.post("/products", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate, request: Request, db: DbSession, actor: RequireAdmin):
    product = CatalogService(db).create_product(
        **payload.model_dump(), actor_id=actor.id, ip_address=client_ip(request)
    )
    return ok_response(product=ProductOut.model_validate(product))


@router.get("/products/{product_id}")
def get_product(product_id: int, db: DbSession, actor: RequireAdmin):
    return ok_response(product=ProductOut.model_validate(CatalogService(db).get_product(product_id)))


@router.put("/products/{product_id}")
def update_product(product_id: int, payload: ProductUpdate, request: Request, db: DbSession,
                   actor: RequireAdmin):
    product = CatalogService(db).update_product(
        product_id, payload.model_dump(exclude_unset=True),
        actor_id=actor.id, ip_address=client_ip(request),
    )
    return ok_response(product=ProductOut.model_validate(product))


@router.delete("/products/{product_id}")
def delete_product(product_id: int, request: Request, db: DbSession, actor: RequireAdmin):
    """Take a product off the menu; it stays listed here as unavailable."""
    product = CatalogService(db).delete_product(product_id, actor_id=actor.id, ip_address=client_ip(request))
    return ok_response(product=ProductOut.model_validate(product))


@router.get("/ordering-windows")
def list_windows(db: DbSession, actor: RequireAdmin, special: Optional[bool] = None):
    windows = CatalogService(db).list_windows(special=special)
    return ok_response(windows=[OrderingWindowOut.model_validate(w) for w in windows])


@router.post("/ordering-windows", status_code=status.HTTP_201_CREATED)
def create_window(payload: OrderingWindowCreate, request: Request, db: DbSession, actor: RequireAdmin):
    window = CatalogService(db).create_window(
        **payload.model_dump(), actor_id=actor.id, ip_address=client_ip(request)
    )
    return ok_response(window=OrderingWindowOut.model_validate(window))


@router.get("/ordering-windows/{window_id}")
def get_window(window_id: int, db: DbSession, actor: RequireAdmin):
    return ok_response(window=OrderingWindowOut.model_validate(CatalogService(db).get_window(window_id)))


@router.put("/ordering-windows/{window_id}")
def update_window(window_id: int, payload: OrderingWindowUpdate, request: Request, db: DbSession,
                  actor: RequireAdmin):
    window = CatalogService(db).update_window(
        window_id, payload.model_dump(exclude_unset=True),
        actor_id=actor.id, ip_address=client_ip(request),
    )
    return ok_response(window=OrderingWindowOut.model_validate(window))


@router.delete("/ordering-windows/{window_id}")
def delete_window(window_id: int, request: Request, db: DbSession, actor: RequireAdmin):
    """Deactivate a window (special windows included)."""
    window = CatalogService(db).delete_window(window_id, actor_id=actor.id, ip_address=client_ip(request))
    return ok_response(window=OrderingWindowOut.model_validate(window))


# ========== SETTINGS ==========

@router.get("/settings")
def list_settings(db: DbSession, actor: RequireAdmin):
    rows = settings_service.list_settings(db)
    return ok_response(settings=[SettingOut.model_validate(r) for r in rows])


@router.put("/settings/{key}")
def put_setting(key: str, payload: SettingUpdate, request: Request, db: DbSession, actor: RequireAdmin):
    row = settings_service.upsert_setting(
        db, key, payload.value, payload.description,
        actor_id=actor.id, ip_address=client_ip(request),
    )
    return ok_response(setting=SettingOut.model_validate(row))
