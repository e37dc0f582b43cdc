"""
Fulfillment Service

Per-item preparation tracking for canteen orders.

Prep stations work by product: "prepare one Burger" increments the oldest
live order that still needs a Burger (FIFO), "unprepare" takes one back from
the newest order that has one (LIFO).  Every write is a compare-and-swap on
``orders.version``; the item row is updated in the same transaction only
after the swap wins.  A lost race means another terminal touched the order
first, so the scan is repeated against fresh data.
"""

import logging
from typing import Any, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from rivercafe.core.config import settings
from rivercafe.core.errors import (
    InvalidState,
    NoEligibleOrder,
    NotFound,
    ValidationError,
)
from rivercafe.core.timeutils import utcnow
from rivercafe.models import TERMINAL_STATUSES, Order, OrderItem, OrderStatus
from rivercafe.services import order_state
from rivercafe.services.audit_service import log_action

logger = logging.getLogger(__name__)


class FulfillmentService:
    """Prepare/unprepare units and explicit status changes."""

    def __init__(self, db: Session, max_attempts: Optional[int] = None):
        self.db = db
        self.max_attempts = max_attempts or settings.prepare_max_attempts

    # ========== BY PRODUCT (prep station) ==========

    def prepare_one_unit(self, product_name: str, actor_id: Optional[int] = None,
                         ip_address: str = "") -> Order:
        """Prepare one unit of *product_name* on the oldest order needing it."""
        return self._step_by_product(product_name, +1, actor_id, ip_address)

    def unprepare_one_unit(self, product_name: str, actor_id: Optional[int] = None,
                           ip_address: str = "") -> Order:
        """Take back one prepared unit of *product_name* from the newest order."""
        return self._step_by_product(product_name, -1, actor_id, ip_address)

    def _step_by_product(self, product_name: str, delta: int,
                         actor_id: Optional[int], ip_address: str) -> Order:
        key = order_state.name_key(product_name)
        if not key:
            raise ValidationError("productName is required")

        for attempt in range(1, self.max_attempts + 1):
            lost_race = False
            for order in self._candidates(key, delta):
                if delta > 0:
                    item = order_state.next_to_prepare(order.items, key)
                else:
                    item = order_state.next_to_unprepare(order.items, key)
                if item is None:
                    continue
                if self._write_step(order, item, delta, actor_id, ip_address):
                    return order
                lost_race = True
                break
            if not lost_race:
                if delta < 0:
                    raise NoEligibleOrder("No matching order with prepared units for this product")
                raise NoEligibleOrder()
            logger.info(
                f"Lost prepare race for {product_name!r} (attempt {attempt}/{self.max_attempts}), rescanning"
            )

        raise InvalidState("Order was changed concurrently, please retry")

    def _candidates(self, key: str, delta: int) -> list[Order]:
        """Live orders holding a matching item that can move by *delta*.

        Eligibility is decided by the item counts alone.
        """
        if delta > 0:
            item_filter = and_(
                OrderItem.name_key == key,
                OrderItem.prepared_count < OrderItem.qty,
            )
            ordering = (Order.created_at.asc(), Order.id.asc())
        else:
            item_filter = and_(
                OrderItem.name_key == key,
                OrderItem.prepared_count > 0,
            )
            ordering = (Order.created_at.desc(), Order.id.desc())

        stmt = (
            select(Order)
            .where(Order.status.notin_(TERMINAL_STATUSES), Order.items.any(item_filter))
            .order_by(*ordering)
            .limit(settings.prepare_candidate_limit)
            .execution_options(populate_existing=True)
        )
        return list(self.db.scalars(stmt))

    # ========== BY ORDER (order card controls) ==========

    def set_item_prepared_delta(self, order_id: int, delta: int,
                                actor_id: Optional[int] = None, ip_address: str = "") -> Order:
        """Move one unit on a single order.

        +1 prepares the first item with units left, -1 unprepares the last
        item with prepared units.  At either bound the call is a no-op that
        returns the order unchanged.
        """
        if delta not in (1, -1):
            raise ValidationError("delta must be +1 or -1")

        for _ in range(self.max_attempts):
            order = self._load(order_id)
            if order_state.is_terminal(order.status):
                raise InvalidState(
                    f"Order is already {order.status.value}", extra={"status": order.status.value}
                )
            if delta > 0:
                item = order_state.next_to_prepare(order.items)
            else:
                item = order_state.next_to_unprepare(order.items)
            if item is None:
                return order
            if self._write_step(order, item, delta, actor_id, ip_address):
                return order

        raise InvalidState("Order was changed concurrently, please retry")

    def _write_step(self, order: Order, item: OrderItem, delta: int,
                    actor_id: Optional[int], ip_address: str) -> bool:
        """Compare-and-swap one unit onto *item*; False if the order moved underneath us."""
        seen_version = order.version
        before_item = item.prepared_count or 0
        new_item_count = min(max(before_item + delta, 0), item.qty)

        prepared, ordered = order_state.totals(order.items)
        prepared += new_item_count - before_item
        new_status = order_state.status_for_counts(prepared, ordered)

        values: dict[str, Any] = {
            "version": seen_version + 1,
            "prepared_count": prepared,
            "status": new_status,
        }
        if delta > 0 and actor_id is not None:
            values["prep_by"] = func.coalesce(Order.prep_by, actor_id)

        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.version == seen_version,
                Order.status.notin_(TERMINAL_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return False

        self.db.execute(
            update(OrderItem)
            .where(OrderItem.id == item.id)
            .values(prepared_count=new_item_count)
            .execution_options(synchronize_session=False)
        )
        log_action(
            action="prepare_unit" if delta > 0 else "unprepare_unit",
            collection_name="orders",
            document_id=order.id,
            actor_id=actor_id,
            changes={
                "item": item.name,
                "itemPreparedCount": [before_item, new_item_count],
                "preparedCount": prepared,
                "status": new_status.value,
            },
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        return True

    # ========== EXPLICIT CHANGES ==========

    def set_status(self, order_id: int, status: Any, actor_id: Optional[int] = None,
                   collected_by_reg_number: Optional[str] = None, ip_address: str = "") -> Order:
        """Explicit status override for manual correction.

        Bypasses the derived-status rule.  ``preparing`` stamps the acting
        staff member; ``collected`` stamps the collector and, if unset, the
        collection time.
        """
        target = order_state.parse_status(status)

        def build(order: Order) -> dict[str, Any]:
            order_state.check_override(order.status, target)
            values: dict[str, Any] = {"status": target}
            if target == OrderStatus.PREPARING and actor_id is not None:
                values["prep_by"] = actor_id
            if target == OrderStatus.COLLECTED:
                if collected_by_reg_number:
                    values["collected_by_reg_number"] = collected_by_reg_number
                values["collected_at"] = func.coalesce(Order.collected_at, utcnow())
                if actor_id is not None:
                    values["collected_by_operator"] = func.coalesce(Order.collected_by_operator, actor_id)
            return values

        return self._patch(
            order_id, build, "set_status", actor_id, ip_address,
            changes={"status": target.value, "collectedByRegNumber": collected_by_reg_number},
            live_only=True,
        )

    def set_prep_by(self, order_id: int, actor_id: int, ip_address: str = "") -> Order:
        return self._patch(
            order_id, lambda order: {"prep_by": actor_id}, "set_prep_by",
            actor_id, ip_address, changes={"prepBy": actor_id},
        )

    def set_collected_by(self, order_id: int, reg_number: Optional[str],
                         actor_id: Optional[int] = None, ip_address: str = "") -> Order:
        reg_number = (reg_number or "").strip()
        if not reg_number:
            raise ValidationError("collectedByRegNumber is required")
        return self._patch(
            order_id, lambda order: {"collected_by_reg_number": reg_number}, "set_collected_by",
            actor_id, ip_address, changes={"collectedByRegNumber": reg_number},
        )

    def _patch(self, order_id: int, build, action: str, actor_id: Optional[int],
               ip_address: str, changes: dict[str, Any], live_only: bool = False) -> Order:
        for _ in range(self.max_attempts):
            order = self._load(order_id)
            seen_version = order.version
            before = order.status.value
            values = build(order)
            values["version"] = seen_version + 1

            stmt = update(Order).where(Order.id == order.id, Order.version == seen_version)
            if live_only:
                stmt = stmt.where(Order.status.notin_(TERMINAL_STATUSES))
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                continue

            log_action(
                action=action,
                collection_name="orders",
                document_id=order.id,
                actor_id=actor_id,
                changes={"statusBefore": before, **changes},
                ip_address=ip_address,
                db=self.db,
            )
            self.db.commit()
            return order

        raise InvalidState("Order was changed concurrently, please retry")

    # ========== QUERIES ==========

    def active_orders(self, limit: int = 200) -> list[Order]:
        """Live orders for the kitchen board, oldest first."""
        return list(self.db.scalars(
            select(Order)
            .where(Order.status.notin_(TERMINAL_STATUSES))
            .order_by(Order.created_at.asc(), Order.id.asc())
            .limit(limit)
        ))

    def get_order(self, order_id: int) -> Order:
        return self._load(order_id)

    def _load(self, order_id: int) -> Order:
        order = self.db.scalars(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        ).first()
        if order is None:
            raise NotFound("Order not found")
        return order
