"""
Collection Service

Pickup counter: resolves an order by id or pickup code, enforces expiry and
status, and marks it collected exactly once.

The status flip is a conditional UPDATE on the prior status, so two
terminals collecting the same order race to a single winner; the loser gets
InvalidState.  ``collected_at`` is only ever set while it is NULL.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from rivercafe.core.config import settings
from rivercafe.core.errors import Expired, InvalidState, NotFound, ValidationError
from rivercafe.core.timeutils import ensure_aware, get_zone, utcnow
from rivercafe.models import COLLECTABLE_STATUSES, ExternalCode, Order, OrderStatus, User
from rivercafe.services.audit_service import log_action

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    order: Order
    issued_to_name: Optional[str]


class CollectionService:
    """Collect orders and look them up for the pickup counter."""

    def __init__(self, db: Session):
        self.db = db

    def collect(
        self,
        order_id: Optional[int] = None,
        code: Optional[str] = None,
        collected_by_reg_number: Optional[str] = None,
        actor_id: Optional[int] = None,
        ip_address: str = "",
    ) -> CollectionResult:
        """Mark one order collected.

        Raises:
            ValidationError: neither an order id nor a code was given.
            NotFound: no such order.
            Expired: the pickup code has expired.
            InvalidState: the order is not preparing or ready.
        """
        order = self._resolve(order_id, code)
        now = utcnow()
        self._check_not_expired(order, now)
        if order.status not in COLLECTABLE_STATUSES:
            raise InvalidState(
                f"Order cannot be collected in status: {order.status.value}",
                extra={"status": order.status.value},
            )

        values = {
            "status": OrderStatus.COLLECTED,
            "collected_at": func.coalesce(Order.collected_at, now),
            "version": Order.version + 1,
        }
        if collected_by_reg_number:
            values["collected_by_reg_number"] = collected_by_reg_number
        if actor_id is not None:
            values["collected_by_operator"] = actor_id

        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_(COLLECTABLE_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.db.scalar(select(Order.status).where(Order.id == order.id))
            raise InvalidState(
                f"Order cannot be collected in status: {current.value}",
                extra={"status": current.value},
            )

        issued_to_name = order.issued_to_name
        external_code_used = None
        if order.external:
            issued_to_name, external_code_used = self._close_external_code(
                order, collected_by_reg_number, now, issued_to_name
            )

        log_action(
            action="collect_order",
            collection_name="orders",
            document_id=order.id,
            actor_id=actor_id,
            changes={
                "status": OrderStatus.COLLECTED.value,
                "collectedByRegNumber": collected_by_reg_number,
                "externalCodeClosed": external_code_used,
            },
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        self.db.refresh(order)
        return CollectionResult(order=order, issued_to_name=issued_to_name)

    def _close_external_code(self, order: Order, reg_number: Optional[str],
                             now: datetime, fallback_name: Optional[str]):
        """Flip the linked ExternalCode to used, once.

        Returns ``(issued_to_name, closed_now)``; an already-used code is not
        an error and still surfaces its recorded name.
        """
        ext = self.db.scalars(
            select(ExternalCode)
            .where(or_(ExternalCode.order_id == order.id, ExternalCode.code == order.code))
            .order_by(ExternalCode.id)
        ).first()
        if ext is None:
            return fallback_name, None

        result = self.db.execute(
            update(ExternalCode)
            .where(ExternalCode.id == ext.id, ExternalCode.used.is_(False))
            .values(used=True, used_at=now, used_by_reg_number=reg_number)
            .execution_options(synchronize_session=False)
        )
        closed = result.rowcount == 1
        if not closed:
            logger.info(f"External code {ext.code} was already used")
        return ext.issued_to_name or fallback_name, closed

    # ========== LOOKUPS ==========

    def lookup_by_code(self, code: str) -> Order:
        """Find a single order by pickup code, honouring expiry."""
        code = (code or "").strip()
        if not code:
            raise ValidationError("Missing order code")
        order = self.db.scalars(select(Order).where(Order.code == code)).first()
        if order is None:
            raise NotFound("Order not found")
        self._check_not_expired(order, utcnow())
        return order

    def list_collectable(self, on_date: Optional[date] = None, q: Optional[str] = None,
                         limit: int = 200) -> list[Order]:
        """Orders waiting at the counter, oldest first.

        *on_date* is a calendar day in the canteen timezone; *q* searches the
        student name, registration number and the external customer's name.
        Expired orders are left out.
        """
        stmt = select(Order).where(Order.status.in_(COLLECTABLE_STATUSES))

        if on_date is not None:
            zone = get_zone(settings.timezone)
            start = datetime.combine(on_date, time.min, tzinfo=zone)
            end = start + timedelta(days=1)
            stmt = stmt.where(
                Order.created_at >= start.astimezone(timezone.utc),
                Order.created_at < end.astimezone(timezone.utc),
            )

        if q and q.strip():
            pattern = f"%{q.strip().lower()}%"
            stmt = stmt.outerjoin(User, User.id == Order.user_id).where(or_(
                func.lower(User.name).like(pattern),
                func.lower(Order.reg_number).like(pattern),
                func.lower(User.reg_number).like(pattern),
                func.lower(Order.issued_to_name).like(pattern),
                func.lower(Order.code).like(pattern),
            ))

        stmt = stmt.order_by(Order.created_at.asc(), Order.id.asc()).limit(limit)
        now = utcnow()
        return [
            order for order in self.db.scalars(stmt)
            if order.expires_at is None or ensure_aware(order.expires_at) >= now
        ]

    # ========== INTERNALS ==========

    def _resolve(self, order_id: Optional[int], code: Optional[str]) -> Order:
        if order_id is not None:
            order = self.db.get(Order, order_id, populate_existing=True)
        elif code and code.strip():
            order = self.db.scalars(
                select(Order).where(Order.code == code.strip())
                .execution_options(populate_existing=True)
            ).first()
        else:
            raise ValidationError("Missing order id or code")
        if order is None:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def _check_not_expired(order: Order, now: datetime) -> None:
        expires_at = ensure_aware(order.expires_at)
        if expires_at is not None and expires_at < now:
            raise Expired()
