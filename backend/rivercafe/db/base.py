"""SQLAlchemy declarative base and common utilities."""

from datetime import datetime

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rivercafe.core.timeutils import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps.

    Timestamps are generated in Python with microsecond precision so that
    ``created_at`` ordering is stable for FIFO scans on every backend.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class VersionMixin:
    """Optimistic locking via a version counter.

    Writers compare-and-swap on ``version``: an UPDATE that carries
    ``WHERE version = :seen`` and sets ``version = :seen + 1`` either wins
    or matches zero rows, in which case the caller re-reads and retries.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)
