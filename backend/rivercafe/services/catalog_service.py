"""Menu products and ordering windows."""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rivercafe.core.errors import NotFound, ValidationError
from rivercafe.core.money import parse_amount
from rivercafe.models import OrderingWindow, Product
from rivercafe.services.audit_service import log_action
from rivercafe.services.ordering_window_service import normalize_days, parse_hhmm


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    def list_products(self, special: Optional[bool] = None, available_only: bool = False) -> list[Product]:
        stmt = select(Product)
        if special is not None:
            stmt = stmt.where(Product.is_special.is_(special))
        if available_only:
            stmt = stmt.where(Product.available.is_(True))
        return list(self.db.scalars(stmt.order_by(Product.category, Product.name)))

    def create_product(self, name: str, price: Any, category: Optional[str] = None,
                       description: Optional[str] = None, available: bool = True,
                       is_special: bool = False, actor_id: Optional[int] = None,
                       ip_address: str = "") -> Product:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        product = Product(
            name=name,
            price_cents=parse_amount(price),
            category=(category or "").strip() or None,
            description=description,
            available=available,
            is_special=is_special,
        )
        self.db.add(product)
        self.db.flush()
        log_action(
            action="create_product",
            collection_name="products",
            document_id=product.id,
            actor_id=actor_id,
            changes={"name": name, "priceCents": product.price_cents, "category": product.category},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(product)
        return product

    def list_windows(self, special: Optional[bool] = None, active_only: bool = False) -> list[OrderingWindow]:
        stmt = select(OrderingWindow)
        if special is not None:
            stmt = stmt.where(OrderingWindow.is_special.is_(special))
        if active_only:
            stmt = stmt.where(OrderingWindow.active.is_(True))
        return list(self.db.scalars(
            stmt.order_by(OrderingWindow.priority.desc(), OrderingWindow.start_time)
        ))

    def create_window(self, name: str, days_of_week: Optional[list] = None,
                      start_time: Optional[str] = None, end_time: Optional[str] = None,
                      timezone: Optional[str] = None, active: bool = True,
                      category: Optional[str] = None, is_special: bool = False,
                      priority: int = 0, description: Optional[str] = None,
                      actor_id: Optional[int] = None, ip_address: str = "") -> OrderingWindow:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Window name is required")
        for label, value in (("startTime", start_time), ("endTime", end_time)):
            if value and parse_hhmm(value) is None:
                raise ValidationError(f"{label} must be HH:MM")
        window = OrderingWindow(
            name=name,
            days_of_week=sorted(normalize_days(days_of_week)),
            start_time=start_time or None,
            end_time=end_time or None,
            timezone=timezone or None,
            active=active,
            category=(category or "").strip() or None,
            is_special=is_special,
            priority=priority,
            description=description,
        )
        self.db.add(window)
        self.db.flush()
        log_action(
            action="create_ordering_window",
            collection_name="ordering_windows",
            document_id=window.id,
            actor_id=actor_id,
            changes={"name": name, "daysOfWeek": window.days_of_week,
                     "startTime": start_time, "endTime": end_time, "category": window.category},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(window)
        return window

    # ========== EDITS ==========

    def get_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    def update_product(self, product_id: int, changes: dict[str, Any],
                       actor_id: Optional[int] = None, ip_address: str = "") -> Product:
        """Apply a partial edit; keys missing from *changes* are left alone."""
        product = self.get_product(product_id)
        before = _product_fields(product)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Product name is required")
            product.name = name
        if "price" in changes:
            product.price_cents = parse_amount(changes["price"])
        if "category" in changes:
            product.category = (changes["category"] or "").strip() or None
        if "description" in changes:
            product.description = changes["description"]
        for field in ("available", "is_special"):
            if changes.get(field) is not None:
                setattr(product, field, bool(changes[field]))
        return self._save(product, "update_product", "products", before,
                          _product_fields(product), actor_id, ip_address)

    def delete_product(self, product_id: int, actor_id: Optional[int] = None,
                       ip_address: str = "") -> Product:
        """Take a product off the menu.  Past orders keep their own item copies."""
        product = self.get_product(product_id)
        before = _product_fields(product)
        product.available = False
        return self._save(product, "disable_product", "products", before,
                          _product_fields(product), actor_id, ip_address)

    def get_window(self, window_id: int) -> OrderingWindow:
        window = self.db.get(OrderingWindow, window_id)
        if window is None:
            raise NotFound("Ordering window not found")
        return window

    def update_window(self, window_id: int, changes: dict[str, Any],
                      actor_id: Optional[int] = None, ip_address: str = "") -> OrderingWindow:
        window = self.get_window(window_id)
        before = _window_fields(window)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Window name is required")
            window.name = name
        for field, label in (("start_time", "startTime"), ("end_time", "endTime")):
            if field in changes:
                value = changes[field] or None
                if value and parse_hhmm(value) is None:
                    raise ValidationError(f"{label} must be HH:MM")
                setattr(window, field, value)
        if "days_of_week" in changes:
            window.days_of_week = sorted(normalize_days(changes["days_of_week"]))
        if "category" in changes:
            window.category = (changes["category"] or "").strip() or None
        if "timezone" in changes:
            window.timezone = changes["timezone"] or None
        if "description" in changes:
            window.description = changes["description"]
        for field in ("active", "is_special"):
            if changes.get(field) is not None:
                setattr(window, field, bool(changes[field]))
        if changes.get("priority") is not None:
            window.priority = int(changes["priority"])
        return self._save(window, "update_ordering_window", "ordering_windows", before,
                          _window_fields(window), actor_id, ip_address)

    def delete_window(self, window_id: int, actor_id: Optional[int] = None,
                      ip_address: str = "") -> OrderingWindow:
        """Deactivate a window; students can no longer order through it."""
        window = self.get_window(window_id)
        before = _window_fields(window)
        window.active = False
        return self._save(window, "disable_ordering_window", "ordering_windows", before,
                          _window_fields(window), actor_id, ip_address)

    def _save(self, row, action: str, collection: str, before: dict, after: dict,
              actor_id: Optional[int], ip_address: str):
        self.db.flush()
        log_action(
            action=action,
            collection_name=collection,
            document_id=row.id,
            actor_id=actor_id,
            changes={"before": before, "after": after},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(row)
        return row


def _product_fields(product: Product) -> dict[str, Any]:
    return {
        "name": product.name,
        "priceCents": product.price_cents,
        "category": product.category,
        "available": product.available,
        "isSpecial": product.is_special,
    }


def _window_fields(window: OrderingWindow) -> dict[str, Any]:
    return {
        "name": window.name,
        "daysOfWeek": list(window.days_of_week or []),
        "startTime": window.start_time,
        "endTime": window.end_time,
        "active": window.active,
        "category": window.category,
        "isSpecial": window.is_special,
        "priority": window.priority,
    }
