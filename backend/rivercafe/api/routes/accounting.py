"""
Accounting API Endpoints
Admin-entered top-ups, withdrawals, refunds and reconciliation
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional, Union

from fastapi import APIRouter, Query, Request

from rivercafe.core.config import settings
from rivercafe.core.errors import ValidationError
from rivercafe.core.rbac import RequireAccounting
from rivercafe.core.responses import client_ip, ok_response, page_response
from rivercafe.core.timeutils import get_zone
from rivercafe.db.session import DbSession
from rivercafe.schemas.common import CamelModel
from rivercafe.schemas.ledger import TransactionOut
from rivercafe.schemas.user import UserOut
from rivercafe.services.ledger_service import LedgerService


router = APIRouter()


# ========== SCHEMAS ==========

class BalanceChangeRequest(CamelModel):
    user_id_or_reg: Union[int, str]
    amount: Union[float, str, None] = None
    note: Optional[str] = None


class WithdrawRequest(BalanceChangeRequest):
    allow_negative: bool = False


class RefundRequest(BalanceChangeRequest):
    related_order: Union[int, str, None] = None


class ReconcileRequest(CamelModel):
    transaction_ids: List[Any]
    note: Optional[str] = None


def _balance_response(user, tx) -> dict:
    return ok_response(
        user=UserOut.model_validate(user),
        tx=TransactionOut.model_validate(tx) if tx is not None else None,
    )


def _parse_bound(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """Parse an ISO date or datetime query bound into UTC.

    A bare date means the start (or, for an upper bound, the end) of that
    day in the canteen timezone.
    """
    if not value:
        return None
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            start = datetime.combine(day, time.min, tzinfo=get_zone(settings.timezone))
            bound = start + timedelta(days=1) - timedelta(microseconds=1) if end_of_day else start
        else:
            bound = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if bound.tzinfo is None:
                bound = bound.replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")
    return bound.astimezone(timezone.utc)


# ========== ENDPOINTS ==========

@router.post("/topup")
def top_up(payload: BalanceChangeRequest, request: Request, db: DbSession, actor: RequireAccounting):
    """Credit a student's balance."""
    user, tx = LedgerService(db).top_up(
        actor.id, payload.user_id_or_reg, payload.amount, payload.note,
        ip_address=client_ip(request),
    )
    return _balance_response(user, tx)


@router.post("/withdraw")
def withdraw(payload: WithdrawRequest, request: Request, db: DbSession, actor: RequireAccounting):
    """Debit a balance; refuses to go negative unless allowNegative is set."""
    user, tx = LedgerService(db).withdraw(
        actor.id,
        payload.user_id_or_reg,
        payload.amount,
        payload.note,
        allow_negative=payload.allow_negative,
        ip_address=client_ip(request),
    )
    return _balance_response(user, tx)


@router.post("/refund")
def refund(payload: RefundRequest, request: Request, db: DbSession, actor: RequireAccounting):
    user, tx = LedgerService(db).refund(
        actor.id, payload.user_id_or_reg, payload.amount, payload.note,
        related_order_ref=payload.related_order,
        ip_address=client_ip(request),
    )
    return _balance_response(user, tx)


@router.post("/reconcile")
def reconcile(payload: ReconcileRequest, request: Request, db: DbSession, actor: RequireAccounting):
    """Mark transactions reconciled; unknown ids come back in invalidIds."""
    result = LedgerService(db).reconcile(
        payload.transaction_ids, payload.note, actor.id, ip_address=client_ip(request)
    )
    return ok_response(modifiedCount=result.modified_count, invalidIds=result.invalid_ids)


@router.get("/transactions")
def list_transactions(
    db: DbSession,
    actor: RequireAccounting,
    user: Optional[str] = None,
    type: Optional[str] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    limit: int = Query(default=settings.transactions_page_size, ge=1),
    skip: int = Query(default=0, ge=0),
):
    """Newest-first transaction history with optional filters."""
    total, rows = LedgerService(db).list_transactions(
        user_ref=user,
        tx_type=type,
        date_from=_parse_bound(date_from),
        date_to=_parse_bound(date_to, end_of_day=True),
        limit=limit,
        skip=skip,
    )
    return page_response(
        "transactions",
        [TransactionOut.model_validate(t) for t in rows],
        total,
        skip=skip,
        limit=min(limit, settings.transactions_page_limit),
    )
