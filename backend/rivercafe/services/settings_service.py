"""Runtime key/value settings with upsert semantics."""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rivercafe.models import AppSetting
from rivercafe.services.audit_service import log_action


def list_settings(db: Session) -> list[AppSetting]:
    return list(db.scalars(select(AppSetting).order_by(AppSetting.key)))


def upsert_setting(db: Session, key: str, value: Any, description: Optional[str] = None,
                   actor_id: Optional[int] = None, ip_address: str = "") -> AppSetting:
    row = db.scalars(select(AppSetting).where(AppSetting.key == key)).first()
    before = row.value if row is not None else None
    if row is None:
        row = AppSetting(key=key)
        db.add(row)
    row.value = value
    if description is not None:
        row.description = description
    row.updated_by = actor_id
    db.flush()
    log_action(
        action="upsert_setting",
        collection_name="app_settings",
        document_id=row.id,
        actor_id=actor_id,
        changes={"key": key, "before": before, "after": value},
        ip_address=ip_address,
        db=db,
    )
    db.commit()
    db.refresh(row)
    return row
