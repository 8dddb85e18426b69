"""Customer model - contacts and companies from the external CRM land here."""

from __future__ import annotations

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin


class Customer(UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin, Base):
    __tablename__ = "customer"
    __table_args__ = (
        UniqueConstraint("user_id", "external_id", name="uq_customer_user_external"),
        Index("ix_customer_user_email", "user_id", "email"),
    )

    customer_type: Mapped[str] = mapped_column(String(20), default="contact")  # contact, company
    name: Mapped[str] = mapped_column(String(255))
    first_name: Mapped[str | None] = mapped_column(String(100), default=None)
    last_name: Mapped[str | None] = mapped_column(String(100), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    phone: Mapped[str | None] = mapped_column(String(50), default=None)
    company: Mapped[str | None] = mapped_column(String(200), default=None)
    website: Mapped[str | None] = mapped_column(String(255), default=None)
    vat_number: Mapped[str | None] = mapped_column(String(50), default=None)
    city: Mapped[str | None] = mapped_column(String(100), default=None)
    country: Mapped[str | None] = mapped_column(String(50), default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<Customer {self.name!r} ({self.customer_type})>"
