"""SyncRun model - append-only history, one row per orchestrator invocation."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, OwnerMixin, utcnow


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRun(UUIDMixin, OwnerMixin, Base):
    __tablename__ = "crm_sync_run"

    sync_type: Mapped[str] = mapped_column(String(20))  # sync, import, full_import, smart_sync, export, resume
    scope: Mapped[str] = mapped_column(String(30), default="all")
    status: Mapped[str] = mapped_column(
        String(20), default=SyncRunStatus.RUNNING.value, index=True
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    records_success: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    records_conflicted: Mapped[int] = mapped_column(Integer, default=0)
    error_details: Mapped[dict | None] = mapped_column(JSON, default=None)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    @property
    def is_finished(self) -> bool:
        return self.status != SyncRunStatus.RUNNING.value

    def finish(
        self,
        status: SyncRunStatus,
        *,
        processed: int = 0,
        success: int = 0,
        failed: int = 0,
        conflicted: int = 0,
        error_details: dict | None = None,
    ) -> None:
        """Move a running row to its terminal state. Finished rows are immutable."""
        if self.is_finished:
            raise RuntimeError(f"SyncRun {self.id} is already {self.status}")
        if status == SyncRunStatus.RUNNING:
            raise ValueError("finish() requires a terminal status")

        self.status = status.value
        self.records_processed = processed
        self.records_success = success
        self.records_failed = failed
        self.records_conflicted = conflicted
        self.error_details = error_details
        self.completed_at = utcnow()

    def __repr__(self) -> str:
        return f"<SyncRun {self.sync_type} {self.status}>"
