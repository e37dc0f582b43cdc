"""Audit logging service.

Every mutating canteen operation writes one audit entry.  Writes are
best-effort: a failed audit insert is logged and swallowed, never surfaced
to the caller and never allowed to roll back the primary mutation.

When called with the caller's session the entry is written inside a
SAVEPOINT, so it commits atomically with the mutation when everything
succeeds and is discarded on its own when the insert fails.  Without a
session, ``log_action`` opens its own short-lived one.
"""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rivercafe.db.session import SessionLocal
from rivercafe.models.operations import AuditLogEntry

logger = logging.getLogger("audit")


def log_action(
    action: str,
    collection_name: str = "",
    document_id: Any = None,
    actor_id: Optional[int] = None,
    changes: Optional[dict[str, Any]] = None,
    ip_address: str = "",
    db: Optional[Session] = None,
) -> None:
    """Write an audit log entry.

    Args:
        action: The action performed (topup, withdraw, prepare_unit, collect_order, ...)
        collection_name: Table affected (users, transactions, orders, ...)
        document_id: ID of the affected row, if any
        actor_id: ID of the user performing the action
        changes: Opaque before/after or delta payload
        ip_address: Client IP address
        db: Optional existing DB session. If None, creates a new one.
    """
    entry = AuditLogEntry(
        actor_id=actor_id,
        action=action,
        collection_name=collection_name,
        document_id=str(document_id) if document_id is not None else None,
        changes=changes or {},
        ip_address=(ip_address or "")[:50],
    )

    if db is not None:
        try:
            with db.begin_nested():
                db.add(entry)
        except SQLAlchemyError:
            logger.exception(f"Failed to write audit log entry for {action}")
        return

    own = SessionLocal()
    try:
        own.add(entry)
        own.commit()
    except SQLAlchemyError:
        logger.exception(f"Failed to write audit log entry for {action}")
        own.rollback()
    finally:
        own.close()


def log_login(actor_id: Optional[int], identifier: str, ip_address: str,
              success: bool = True, db: Optional[Session] = None) -> None:
    """Log a login attempt."""
    log_action(
        action="login" if success else "failed_login",
        collection_name="sessions",
        document_id=actor_id if success else None,
        actor_id=actor_id if success else None,
        changes={"identifier": identifier},
        ip_address=ip_address,
        db=db,
    )
