"""BatchProgress model - the resumable cursor for one (user, entity type)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, OwnerMixin, utcnow


class ProgressStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class StopReason(str, Enum):
    """Why a page loop ended for one entity type."""

    EXHAUSTED = "exhausted"  # true end of data
    PAGE_LIMIT = "page_limit"  # page ceiling reached, more data may exist
    ERROR = "error"


class BatchProgress(UUIDMixin, OwnerMixin, Base):
    __tablename__ = "crm_batch_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", name="uq_crm_batch_progress_user_type"),
    )

    entity_type: Mapped[str] = mapped_column(String(30))
    total_estimated: Mapped[int] = mapped_column(Integer, default=0)
    total_imported: Mapped[int] = mapped_column(Integer, default=0)
    last_imported_page: Mapped[int] = mapped_column(Integer, default=0)
    last_imported_id: Mapped[str | None] = mapped_column(String(100), default=None)
    batch_size: Mapped[int] = mapped_column(Integer, default=100)
    status: Mapped[str] = mapped_column(String(20), default=ProgressStatus.PENDING.value)
    stop_reason: Mapped[str | None] = mapped_column(String(20), default=None)
    error_details: Mapped[dict | None] = mapped_column(JSON, default=None)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    @property
    def is_resumable(self) -> bool:
        """True when a previous run stopped before the end of data."""
        return self.status in (ProgressStatus.ACTIVE.value, ProgressStatus.FAILED.value)

    @property
    def next_page(self) -> int:
        return self.last_imported_page + 1 if self.is_resumable else 1

    def reset(self, batch_size: int) -> None:
        self.total_estimated = 0
        self.total_imported = 0
        self.last_imported_page = 0
        self.last_imported_id = None
        self.batch_size = batch_size
        self.status = ProgressStatus.PENDING.value
        self.stop_reason = None
        self.error_details = None
        self.started_at = utcnow()
        self.completed_at = None

    def __repr__(self) -> str:
        return f"<BatchProgress {self.entity_type} page={self.last_imported_page} {self.status}>"
