"""
Ledger Service

Applies signed balance deltas to user accounts and records one immutable
Transaction per applied change.

MONEY-CRITICAL: ``users.balance_cents`` is written only through
``AccountStore.atomic_adjust_balance``.  The sufficient-funds check is part
of the UPDATE's own WHERE clause and the balance before the change is
derived from the value the UPDATE returns, so concurrent deltas against one
account serialize in the database and never lose an update.

Two consistency modes:

* transactional (default): balance update, transaction row and audit row
  commit together or not at all.
* fallback, when the store cannot run multi-statement transactions: the
  conditional balance update is committed alone, then the transaction row is
  written.  A failure at that point is a recoverable inconsistency; it is
  logged at ERROR for manual reconciliation and the money movement stands.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivercafe.core.config import settings
from rivercafe.core.errors import (
    InsufficientBalance,
    NotFound,
    TransactionsUnsupported,
    ValidationError,
)
from rivercafe.core.money import parse_amount
from rivercafe.core.timeutils import utcnow
from rivercafe.models import Order, Transaction, TransactionType, User
from rivercafe.services.audit_service import log_action

logger = logging.getLogger(__name__)

# Driver messages meaning "this deployment cannot run multi-statement transactions"
_TRANSACTIONS_UNSUPPORTED_MARKERS = (
    "transaction numbers are only allowed",
    "not a replica set member",
    "transactions are not supported",
    "cannot start a transaction within a transaction",
)


def _is_transaction_unsupported(exc: BaseException) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in _TRANSACTIONS_UNSUPPORTED_MARKERS)


def _parse_id(value: Any) -> Optional[int]:
    """Return a positive integer id, or None if *value* is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


class AccountStore:
    """Storage primitives the ledger is built on.

    ``atomic_adjust_balance`` is a single conditional UPDATE ... RETURNING;
    ``run_in_transaction`` groups writes into one commit.
    """

    def __init__(self, db: Session, transactional: Optional[bool] = None):
        self.db = db
        self.transactional = (
            settings.ledger_transactions_enabled if transactional is None else transactional
        )
        self._depth = 0

    def resolve_user(self, user_ref: Any) -> Optional[User]:
        """Find a user by id or registration number.

        A JSON integer is always an id.  A string is a registration number
        first; only when no registration number matches is a numeric string
        tried as an id, so a student whose registration number looks like
        another account's id is never mistaken for that account.
        """
        if user_ref is None or isinstance(user_ref, bool):
            return None
        if isinstance(user_ref, int):
            return self.db.get(User, user_ref) if user_ref > 0 else None

        reg_number = str(user_ref).strip()
        if not reg_number:
            return None
        user = self.db.scalars(
            select(User).where(User.reg_number == reg_number)
        ).first()
        if user is not None:
            return user
        user_id = _parse_id(reg_number)
        return self.db.get(User, user_id) if user_id is not None else None

    def atomic_adjust_balance(
        self, user_id: int, delta_cents: int, floor_cents: Optional[int] = None
    ) -> Optional[Tuple[int, int]]:
        """Apply *delta_cents* in one statement.

        With *floor_cents* set, the update only applies when the resulting
        balance stays at or above it.  Returns ``(before, after)`` in cents,
        or None when the predicate rejected the write.
        """
        stmt = update(User).where(User.id == user_id)
        if floor_cents is not None:
            stmt = stmt.where(User.balance_cents + delta_cents >= floor_cents)
        stmt = (
            stmt.values(balance_cents=User.balance_cents + delta_cents)
            .returning(User.balance_cents)
            .execution_options(synchronize_session=False)
        )
        after = self.db.execute(stmt).scalar_one_or_none()
        if after is None:
            return None
        return after - delta_cents, after

    @contextmanager
    def run_in_transaction(self) -> Iterator[Session]:
        """Run the block in one database transaction.

        Re-entrant: only the outermost block commits or rolls back.  Raises
        TransactionsUnsupported when the store is configured without
        transactions or the driver reports that it cannot run them.
        """
        if not self.transactional:
            raise TransactionsUnsupported("account store runs without transactions")

        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self.db
        except BaseException as exc:
            if outermost:
                self.db.rollback()
                if isinstance(exc, SQLAlchemyError) and _is_transaction_unsupported(exc):
                    raise TransactionsUnsupported(str(exc)) from exc
            raise
        finally:
            self._depth -= 1

        if outermost:
            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                if _is_transaction_unsupported(exc):
                    raise TransactionsUnsupported(str(exc)) from exc
                raise


@dataclass
class ReconcileResult:
    modified_count: int
    invalid_ids: list = field(default_factory=list)


class LedgerService:
    """Top-ups, withdrawals, order debits, refunds and reconciliation."""

    def __init__(self, db: Session, store: Optional[AccountStore] = None):
        self.db = db
        self.store = store or AccountStore(db)

    # ========== BALANCE CHANGES ==========

    def top_up(
        self,
        actor_id: Optional[int],
        user_ref: Any,
        amount: Any,
        note: Optional[str] = None,
        ip_address: str = "",
    ) -> Tuple[User, Optional[Transaction]]:
        """Credit *amount* to the account identified by id or registration number."""
        cents = parse_amount(amount)
        user = self._require_user(user_ref)
        return self._apply(
            user.id, cents, TransactionType.TOPUP,
            actor_id=actor_id, note=note, action="topup", ip_address=ip_address,
        )

    def withdraw(
        self,
        actor_id: Optional[int],
        user_ref: Any,
        amount: Any,
        note: Optional[str] = None,
        allow_negative: bool = False,
        ip_address: str = "",
    ) -> Tuple[User, Optional[Transaction]]:
        """Debit *amount*; refuses to go below zero unless *allow_negative*."""
        cents = parse_amount(amount)
        user = self._require_user(user_ref)
        return self._apply(
            user.id, -cents, TransactionType.ADJUSTMENT,
            actor_id=actor_id,
            note=note or self._withdraw_note(actor_id),
            floor_cents=None if allow_negative else 0,
            action="withdraw",
            ip_address=ip_address,
            audit_changes={"allowNegative": allow_negative},
        )

    def debit_for_order(
        self,
        user_id: int,
        amount_cents: int,
        order_id: Optional[int],
        actor_id: Optional[int] = None,
        note: Optional[str] = None,
        ip_address: str = "",
    ) -> Tuple[User, Optional[Transaction]]:
        """Charge an order; applies only when the balance covers it.

        Raises InsufficientBalance without touching the account otherwise, so
        the caller knows not to create (or to discard) the order.
        """
        if amount_cents <= 0:
            raise ValidationError("Order total must be positive")
        return self._apply(
            user_id, -amount_cents, TransactionType.ORDER,
            actor_id=actor_id if actor_id is not None else user_id,
            note=note,
            floor_cents=0,
            related_order_id=order_id,
            action="order_debit",
            ip_address=ip_address,
        )

    def refund(
        self,
        actor_id: Optional[int],
        user_ref: Any,
        amount: Any,
        note: Optional[str] = None,
        related_order_ref: Any = None,
        ip_address: str = "",
    ) -> Tuple[User, Optional[Transaction]]:
        """Credit money back to an account, optionally against an order."""
        cents = parse_amount(amount)
        user = self._require_user(user_ref)
        related_order_id = None
        if related_order_ref not in (None, ""):
            order = self._resolve_order(related_order_ref)
            if order is None:
                raise NotFound("Related order not found")
            related_order_id = order.id
        return self._apply(
            user.id, cents, TransactionType.REFUND,
            actor_id=actor_id,
            note=note or "Refund",
            related_order_id=related_order_id,
            action="refund",
            ip_address=ip_address,
        )

    # ========== RECONCILIATION ==========

    def reconcile(
        self,
        transaction_ids: Sequence[Any],
        note: Optional[str],
        actor_id: Optional[int],
        ip_address: str = "",
    ) -> ReconcileResult:
        """Mark transactions reconciled.

        Ids that are malformed or unknown are reported in ``invalid_ids``.
        Already-reconciled transactions count as modified but keep their
        original reconciliation stamp.
        """
        invalid_ids: list = []
        parsed: list[Tuple[Any, int]] = []
        for raw in transaction_ids or []:
            tx_id = _parse_id(raw)
            if tx_id is None:
                invalid_ids.append(raw)
            else:
                parsed.append((raw, tx_id))

        found: set[int] = set()
        if parsed:
            found = set(self.db.scalars(
                select(Transaction.id).where(Transaction.id.in_([i for _, i in parsed]))
            ))
        invalid_ids.extend(raw for raw, tx_id in parsed if tx_id not in found)

        matched = sorted(found)
        if not matched:
            raise ValidationError(
                "No valid transaction ids provided", extra={"invalidIds": invalid_ids}
            )

        self.db.execute(
            update(Transaction)
            .where(Transaction.id.in_(matched), Transaction.reconciled.is_(False))
            .values(
                reconciled=True,
                reconciled_at=utcnow(),
                reconciled_by=actor_id,
                reconcile_note=note,
            )
            .execution_options(synchronize_session=False)
        )
        log_action(
            action="reconcile",
            collection_name="transactions",
            actor_id=actor_id,
            changes={"transactionIds": matched, "note": note, "invalidIds": [str(i) for i in invalid_ids]},
            ip_address=ip_address,
            db=self.db,
        )
        self.db.commit()
        return ReconcileResult(modified_count=len(matched), invalid_ids=invalid_ids)

    # ========== QUERIES ==========

    def list_transactions(
        self,
        user_ref: Optional[str] = None,
        tx_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> Tuple[int, list[Transaction]]:
        """Newest-first page of transactions.

        *user_ref* matches a user id, registration number or exact name
        (case-insensitive); an unknown user yields an empty page.
        """
        query = select(Transaction)
        if user_ref:
            user = self.store.resolve_user(user_ref) or self.db.scalars(
                select(User).where(func.lower(User.name) == user_ref.strip().lower())
            ).first()
            if user is None:
                return 0, []
            query = query.where(Transaction.user_id == user.id)
        if tx_type:
            try:
                query = query.where(Transaction.type == TransactionType(tx_type))
            except ValueError:
                raise ValidationError(f"Unknown transaction type: {tx_type}")
        if date_from is not None:
            query = query.where(Transaction.created_at >= date_from)
        if date_to is not None:
            query = query.where(Transaction.created_at <= date_to)

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        rows = self.db.scalars(
            query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(max(skip, 0))
            .limit(self._page_limit(limit))
        ).all()
        return total, list(rows)

    def statement(self, user_id: int, limit: Optional[int] = None) -> list[Transaction]:
        """A user's own transactions, newest first."""
        return list(self.db.scalars(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(self._page_limit(limit))
        ))

    # ========== INTERNALS ==========

    def _page_limit(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return settings.transactions_page_size
        return min(limit, settings.transactions_page_limit)

    def _withdraw_note(self, actor_id: Optional[int]) -> str:
        actor = self.db.get(User, actor_id) if actor_id is not None else None
        return f"Withdrawn by admin {actor.name}" if actor is not None else "Withdrawn by admin"

    def _require_user(self, user_ref: Any) -> User:
        user = self.store.resolve_user(user_ref)
        if user is None:
            raise NotFound("User not found")
        return user

    def _resolve_order(self, order_ref: Any) -> Optional[Order]:
        order_id = _parse_id(order_ref)
        if order_id is not None:
            order = self.db.get(Order, order_id)
            if order is not None:
                return order
        return self.db.scalars(select(Order).where(Order.code == str(order_ref).strip())).first()

    def _apply(
        self,
        user_id: int,
        delta_cents: int,
        tx_type: TransactionType,
        actor_id: Optional[int],
        note: Optional[str] = None,
        floor_cents: Optional[int] = None,
        related_order_id: Optional[int] = None,
        action: str = "balance_change",
        ip_address: str = "",
        audit_changes: Optional[dict[str, Any]] = None,
    ) -> Tuple[User, Optional[Transaction]]:
        kwargs = dict(
            tx_type=tx_type, actor_id=actor_id, note=note, floor_cents=floor_cents,
            related_order_id=related_order_id, action=action, ip_address=ip_address,
            audit_changes=audit_changes,
        )
        try:
            with self.store.run_in_transaction():
                tx = self._adjust(user_id, delta_cents, **kwargs)
                self.db.add(tx)
                self.db.flush()
                self._audit(tx, action, actor_id, ip_address, audit_changes)
        except TransactionsUnsupported:
            logger.info(f"Ledger running without transactions for {action} on user {user_id}")
            return self._apply_without_transaction(user_id, delta_cents, **kwargs)

        user = self.db.get(User, user_id, populate_existing=True)
        return user, tx

    def _adjust(
        self,
        user_id: int,
        delta_cents: int,
        tx_type: TransactionType,
        actor_id: Optional[int],
        note: Optional[str],
        floor_cents: Optional[int],
        related_order_id: Optional[int],
        **_: Any,
    ) -> Transaction:
        """Apply the conditional update and build the matching Transaction."""
        result = self.store.atomic_adjust_balance(user_id, delta_cents, floor_cents)
        if result is None:
            raise InsufficientBalance()
        before, after = result
        return Transaction(
            user_id=user_id,
            type=tx_type,
            amount_cents=delta_cents,
            balance_before_cents=before,
            balance_after_cents=after,
            related_order_id=related_order_id,
            note=note,
            created_by=actor_id,
        )

    def _apply_without_transaction(
        self, user_id: int, delta_cents: int, **kwargs: Any
    ) -> Tuple[User, Optional[Transaction]]:
        try:
            tx = self._adjust(user_id, delta_cents, **kwargs)
        except InsufficientBalance:
            self.db.rollback()
            raise
        # The balance change is the atomic linchpin; it stands from here on.
        self.db.commit()

        try:
            self.db.add(tx)
            self.db.flush()
            self._audit(tx, kwargs["action"], kwargs["actor_id"],
                        kwargs["ip_address"], kwargs["audit_changes"])
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(
                "Recoverable ledger inconsistency: balance of user %s moved by %+d cents "
                "(%d -> %d) but the %s transaction record was not written",
                user_id, delta_cents, tx.balance_before_cents, tx.balance_after_cents,
                kwargs["tx_type"].value,
                exc_info=True,
            )
            tx = None

        user = self.db.get(User, user_id, populate_existing=True)
        return user, tx

    def _audit(
        self,
        tx: Transaction,
        action: str,
        actor_id: Optional[int],
        ip_address: str,
        extra: Optional[dict[str, Any]],
    ) -> None:
        changes = {
            "userId": tx.user_id,
            "type": tx.type.value,
            "amountCents": tx.amount_cents,
            "balanceBeforeCents": tx.balance_before_cents,
            "balanceAfterCents": tx.balance_after_cents,
            "relatedOrderId": tx.related_order_id,
        }
        if extra:
            changes.update(extra)
        log_action(
            action=action,
            collection_name="transactions",
            document_id=tx.id,
            actor_id=actor_id,
            changes=changes,
            ip_address=ip_address,
            db=self.db,
        )
