"""Project model."""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin


class Project(UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin, Base):
    __tablename__ = "project"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_project_user_external"),
    )

    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str | None] = mapped_column(String(30), default=None)
    start_date: Mapped[date | None] = mapped_column(Date, default=None)
    end_date: Mapped[date | None] = mapped_column(Date, default=None)
    budget: Mapped[float | None] = mapped_column(Float, default=None)
    currency: Mapped[str | None] = mapped_column(String(3), default=None)
    responsible_user_external_id: Mapped[str | None] = mapped_column(String(100), default=None)

    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("customer.id", ondelete="SET NULL"), default=None, index=True
    )
    company_external_id: Mapped[str | None] = mapped_column(String(100), default=None)
    contact_external_id: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<Project {self.title!r}>"
