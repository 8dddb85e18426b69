"""Conflict model - field-level divergence awaiting an external decision."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, OwnerMixin, utcnow


class ConflictResolution(str, Enum):
    PENDING = "pending"
    USE_LOCAL = "use_local"
    USE_EXTERNAL = "use_external"


class Conflict(UUIDMixin, OwnerMixin, Base):
    __tablename__ = "crm_conflict"
    __table_args__ = (
        Index("ix_crm_conflict_record_field", "record_type", "record_id", "field"),
    )

    record_type: Mapped[str] = mapped_column(String(30))  # contacts, deals, ...
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    external_id: Mapped[str | None] = mapped_column(String(100), default=None)
    field: Mapped[str] = mapped_column(String(100))
    local_value: Mapped[str | None] = mapped_column(Text, default=None)
    external_value: Mapped[str | None] = mapped_column(Text, default=None)
    resolution: Mapped[str] = mapped_column(
        String(20), default=ConflictResolution.PENDING.value, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    @property
    def is_pending(self) -> bool:
        return self.resolution == ConflictResolution.PENDING.value

    def __repr__(self) -> str:
        return f"<Conflict {self.record_type}.{self.field} {self.resolution}>"
