"""Invoice model."""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, Float, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin


class Invoice(UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin, Base):
    __tablename__ = "invoice"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_invoice_user_external"),
    )

    invoice_number: Mapped[str | None] = mapped_column(String(50), default=None)
    title: Mapped[str | None] = mapped_column(String(255), default=None)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    total_amount: Mapped[float | None] = mapped_column(Float, default=None)
    currency: Mapped[str | None] = mapped_column(String(3), default=None)
    status: Mapped[str | None] = mapped_column(String(30), default=None)
    invoice_date: Mapped[date | None] = mapped_column(Date, default=None)
    due_date: Mapped[date | None] = mapped_column(Date, default=None)
    paid_at: Mapped[date | None] = mapped_column(Date, default=None)

    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("customer.id", ondelete="SET NULL"), default=None, index=True
    )
    deal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("deal.id", ondelete="SET NULL"), default=None
    )
    deal_external_id: Mapped[str | None] = mapped_column(String(100), default=None)
    company_external_id: Mapped[str | None] = mapped_column(String(100), default=None)
    contact_external_id: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number or self.external_id}>"
