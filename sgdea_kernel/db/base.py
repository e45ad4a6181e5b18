"""
Module: sgdea_kernel.db.base
Responsibility: declarative base, portable column types and the
    TrackedBase mixin shared by every workflow table.
Architecture position: Kernel > DB.  Imported by every model module;
    imports nothing else from the kernel.

Invariants enforced:
    - Every table has a uuid4 primary key stored as a 36-character string.
    - Datetimes are written as UTC and always read back timezone-aware,
      including on SQLite.
    - TrackedBase timestamps come from the service's Clock.  They are
      bookkeeping only and never count as a significant change.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime on every backend.

    SQLite has no timezone storage, so values are converted to UTC and
    stored naive there, then tagged as UTC again when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds who created or last touched a row, and when."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[PyUUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(nullable=True)


UUID = PyUUID
