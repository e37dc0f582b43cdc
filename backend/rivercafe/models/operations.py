"""Operations models: runtime settings and the audit log."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from rivercafe.db.base import Base


# ===================== SETTINGS =====================

class AppSetting(Base):
    """Key-value settings store (banner text, feature toggles)."""
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(JSON, nullable=True)
    description = Column(String(500), nullable=True)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


# ===================== AUDIT =====================

class AuditLogEntry(Base):
    """Append-only record of one mutating action."""
    __tablename__ = "audit_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    collection_name = Column(String(50), nullable=True, index=True)
    document_id = Column(String(50), nullable=True)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
