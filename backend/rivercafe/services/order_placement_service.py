"""
Order Placement Service

Creates orders: regular student orders, special (pre-order) student orders,
and cash orders issued by staff for customers without an account.

Student orders are gated by ordering windows and paid through the ledger.
In transactional mode the order row, the conditional debit, the ledger
transaction and the audit entry commit together, so a failed debit leaves
no order behind.  Without transactions the debit runs first as the atomic
step; if the order then cannot be written, the payment stands and the gap
is logged for manual reconciliation.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivercafe.core.config import settings
from rivercafe.core.errors import (
    NotFound,
    OrderingClosed,
    StorageUnavailable,
    TransactionsUnsupported,
    ValidationError,
)
from rivercafe.core.timeutils import utcnow
from rivercafe.models import (
    ExternalCode,
    Order,
    OrderItem,
    OrderKind,
    OrderStatus,
    OrderingWindow,
    Product,
    Transaction,
    User,
)
from rivercafe.services import order_state
from rivercafe.services.audit_service import log_action
from rivercafe.services.ledger_service import AccountStore, LedgerService
from rivercafe.services.ordering_window_service import first_open_window, windows_for

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_ATTEMPTS = 20


@dataclass
class OrderLine:
    product: Product
    qty: int
    notes: Optional[str] = None


@dataclass
class PlacementResult:
    order: Order
    tx: Optional[Transaction] = None
    external_code: Optional[ExternalCode] = None


class OrderPlacementService:
    """Create orders and take payment for them."""

    def __init__(self, db: Session, store: Optional[AccountStore] = None):
        self.db = db
        self.store = store or AccountStore(db)
        self.ledger = LedgerService(db, self.store)

    # ========== STUDENT ORDERS ==========

    def place_order(self, user_id: int, items: Iterable[Any],
                    now: Optional[datetime] = None, ip_address: str = "") -> PlacementResult:
        """Regular menu order, allowed while a matching ordering window is open."""
        user = self._require_customer(user_id)
        lines = self._load_lines(items, special=False)
        categories = {line.product.category for line in lines}
        window = first_open_window(windows_for(self.db, special=False, categories=list(categories)), now)
        if window is None:
            raise OrderingClosed()
        return self._place_for_user(
            user, lines, OrderKind.REGULAR, settings.order_code_prefix, window, None, ip_address
        )

    def place_special_order(self, user_id: int, items: Iterable[Any],
                            now: Optional[datetime] = None, ip_address: str = "") -> PlacementResult:
        """Special-menu order: one category at a time, gated by that category's windows."""
        user = self._require_customer(user_id)
        lines = self._load_lines(items, special=True)
        categories = {(line.product.category or "").strip() for line in lines} - {""}
        if len(categories) != 1:
            raise ValidationError("Special orders must be placed for a single category at a time")
        category = categories.pop()
        window = first_open_window(windows_for(self.db, special=True, categories=[category]), now)
        if window is None:
            raise OrderingClosed("Special ordering is currently closed for this category")
        return self._place_for_user(
            user, lines, OrderKind.SPECIAL, settings.special_order_code_prefix, window, category, ip_address
        )

    # ========== EXTERNAL (CASH) ORDERS ==========

    def place_external_order(
        self,
        actor_id: int,
        items: Iterable[Any],
        issued_to_name: str,
        expires_in_minutes: Optional[int] = None,
        note: Optional[str] = None,
        ip_address: str = "",
    ) -> PlacementResult:
        """Staff-issued order paid in cash; no balance moves.

        The order's code doubles as the customer's pickup code and expires
        after *expires_in_minutes*.
        """
        issued_to_name = (issued_to_name or "").strip()
        if not issued_to_name:
            raise ValidationError("issuedToName is required")
        minutes = expires_in_minutes or settings.external_code_ttl_minutes
        if minutes <= 0:
            raise ValidationError("expiresInMinutes must be positive")
        lines = self._load_lines(items, special=None)
        expires_at = utcnow() + timedelta(minutes=minutes)

        order = self._build_order(
            lines, OrderKind.REGULAR, settings.order_code_prefix,
            user=None, external=True, issued_by=actor_id,
            issued_to_name=issued_to_name, expires_at=expires_at, remarks=note,
        )
        self.db.add(order)
        self.db.flush()
        ext = ExternalCode(
            code=order.code,
            order_id=order.id,
            issued_to_name=issued_to_name,
            issued_by=actor_id,
            expires_at=expires_at,
            note=note,
        )
        self.db.add(ext)
        self.db.flush()
        self._audit_placed(order, actor_id, ip_address, extra={"issuedToName": issued_to_name})
        self.db.commit()
        self.db.refresh(order)
        return PlacementResult(order=order, external_code=ext)

    def list_external_codes(self, pending_only: bool = True, used: Optional[bool] = None,
                            limit: int = 200) -> list[ExternalCode]:
        """Issued cash-order codes, newest first.

        *pending_only* keeps codes that are unused and not yet expired.
        """
        stmt = select(ExternalCode)
        if pending_only:
            stmt = stmt.where(ExternalCode.used.is_(False)).where(
                (ExternalCode.expires_at.is_(None)) | (ExternalCode.expires_at > utcnow())
            )
        elif used is not None:
            stmt = stmt.where(ExternalCode.used.is_(used))
        limit = max(1, min(int(limit), 500))
        stmt = stmt.order_by(ExternalCode.created_at.desc(), ExternalCode.id.desc()).limit(limit)
        return list(self.db.scalars(stmt))

    # ========== INTERNALS ==========

    def _place_for_user(self, user: User, lines: list[OrderLine], kind: OrderKind, prefix: str,
                        window: Optional[OrderingWindow], category: Optional[str],
                        ip_address: str) -> PlacementResult:
        try:
            with self.store.run_in_transaction():
                order = self._build_order(
                    lines, kind, prefix, user=user, category=category,
                    ordering_window_id=window.id if window is not None else None,
                )
                self.db.add(order)
                self.db.flush()
                _, tx = self.ledger.debit_for_order(
                    user.id, order.total_cents, order.id,
                    actor_id=user.id, note=f"Order {order.code}", ip_address=ip_address,
                )
                self._audit_placed(order, user.id, ip_address)
        except TransactionsUnsupported:
            logger.info(f"Placing order for user {user.id} without a transaction")
            return self._place_without_transaction(
                user, lines, kind, prefix, window, category, ip_address
            )
        self.db.refresh(order)
        return PlacementResult(order=order, tx=tx)

    def _place_without_transaction(self, user: User, lines: list[OrderLine], kind: OrderKind,
                                   prefix: str, window: Optional[OrderingWindow],
                                   category: Optional[str], ip_address: str) -> PlacementResult:
        total_cents = sum(line.product.price_cents * line.qty for line in lines)
        user_id = user.id
        _, tx = self.ledger.debit_for_order(
            user_id, total_cents, None, actor_id=user_id, note="Order payment", ip_address=ip_address,
        )
        try:
            order = self._build_order(
                lines, kind, prefix, user=user, category=category,
                ordering_window_id=window.id if window is not None else None,
            )
            self.db.add(order)
            self.db.flush()
            if tx is not None:
                tx.related_order_id = order.id
                tx.note = f"Order {order.code}"
            self._audit_placed(order, user_id, ip_address, extra={"fallback": True})
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Recoverable inconsistency: user %s was charged %d cents (transaction %s) "
                "but the order could not be saved",
                user_id, total_cents, tx.id if tx is not None else None,
                exc_info=True,
            )
            raise StorageUnavailable("Payment was taken but the order could not be saved; please contact staff")
        self.db.refresh(order)
        return PlacementResult(order=order, tx=tx)

    def _require_customer(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFound("User not found")
        return user

    def _load_lines(self, items: Iterable[Any], special: Optional[bool]) -> list[OrderLine]:
        """Validate requested lines against the catalog.

        *special* restricts products to the special (True) or regular
        (False) menu; None accepts both.
        """
        raw_items = list(items or [])
        if not raw_items:
            raise ValidationError("No items provided")

        parsed = []
        for raw in raw_items:
            product_id = _get(raw, "product_id")
            try:
                product_id = int(product_id)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid product id: {product_id}")
            try:
                qty = max(1, int(_get(raw, "qty") or 1))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid quantity for product {product_id}")
            parsed.append((product_id, qty, _get(raw, "notes")))

        ids = {pid for pid, _, _ in parsed}
        products = {p.id: p for p in self.db.scalars(select(Product).where(Product.id.in_(ids)))}

        lines = []
        for product_id, qty, notes in parsed:
            product = products.get(product_id)
            if (
                product is None
                or not product.available
                or (special is not None and product.is_special != special)
            ):
                raise ValidationError(f"Product not found or unavailable: {product_id}")
            lines.append(OrderLine(product=product, qty=qty, notes=notes or None))
        return lines

    def _build_order(self, lines: list[OrderLine], kind: OrderKind, prefix: str,
                     user: Optional[User] = None, **fields: Any) -> Order:
        """Assemble an order with snapshots, auto-prepared items and derived status."""
        auto_categories = settings.auto_prepare_category_set
        items = []
        for position, line in enumerate(lines):
            auto = (line.product.category or "").strip().lower() in auto_categories
            items.append(OrderItem(
                position=position,
                product_id=line.product.id,
                name=line.product.name,
                name_key=order_state.name_key(line.product.name),
                unit_price_cents=line.product.price_cents,
                qty=line.qty,
                prepared_count=line.qty if auto else 0,
                notes=line.notes,
            ))

        prepared, _ = order_state.totals(items)
        status = order_state.derive_status(items)
        order = Order(
            code=self._generate_code(prefix),
            user_id=user.id if user is not None else None,
            reg_number=user.reg_number if user is not None else None,
            kind=kind,
            total_cents=sum(i.unit_price_cents * i.qty for i in items),
            status=status,
            prepared_count=prepared,
            auto_prepared=prepared > 0,
            items=items,
            **fields,
        )
        if status == OrderStatus.READY and fields.get("issued_by") is not None:
            order.prep_by = fields["issued_by"]
        return order

    def _generate_code(self, prefix: str) -> str:
        for _ in range(_CODE_ATTEMPTS):
            suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(settings.pickup_code_length))
            code = f"{prefix}{suffix}"
            taken = self.db.scalar(select(Order.id).where(Order.code == code)) or self.db.scalar(
                select(ExternalCode.id).where(ExternalCode.code == code)
            )
            if not taken:
                return code
        raise StorageUnavailable("Could not allocate a pickup code, please retry")

    def _audit_placed(self, order: Order, actor_id: Optional[int], ip_address: str,
                      extra: Optional[dict[str, Any]] = None) -> None:
        changes = {
            "code": order.code,
            "totalCents": order.total_cents,
            "external": order.external,
            "kind": order.kind.value,
            "items": [{"name": i.name, "qty": i.qty, "preparedCount": i.prepared_count} for i in order.items],
        }
        if extra:
            changes.update(extra)
        log_action(
            action="place_order",
            collection_name="orders",
            document_id=order.id,
            actor_id=actor_id,
            changes=changes,
            ip_address=ip_address,
            db=self.db,
        )


def _get(raw: Any, name: str) -> Any:
    """Read a line field from a dict (snake or camel case) or an object."""
    if isinstance(raw, dict):
        if name in raw:
            return raw[name]
        camel = name.split("_")[0] + "".join(p.title() for p in name.split("_")[1:])
        return raw.get(camel)
    return getattr(raw, name, None)
