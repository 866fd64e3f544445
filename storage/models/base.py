"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Declarative base and shared column types for every lifecycle
table (definitions, partition metadata, queue, audit log).

============================================================
COMPONENTS
============================================================
- UTCDateTime: timezone-aware datetime column that always
  reads back in UTC, including on SQLite
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: created_at / updated_at columns

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    DateTime column normalised to UTC.

    Naive values are taken to be UTC on the way in; values loaded
    from backends without timezone support get tzinfo=UTC attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    Every `Mapped[datetime]` column is stored as UTCDateTime.
    """

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Used by operator-maintained definition tables (profiles,
    templates, policies).
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        comment="Record creation timestamp (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Last update timestamp (UTC)"
    )
