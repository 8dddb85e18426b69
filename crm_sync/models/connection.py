"""Connection model - one OAuth token pair per user for the external CRM."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin


class Connection(UUIDMixin, TimestampMixin, OwnerMixin, Base):
    __tablename__ = "crm_connection"
    __table_args__ = (
        # At most one active connection per user.
        Index(
            "uq_crm_connection_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
    )

    access_token: Mapped[str | None] = mapped_column(Text, default=None)
    refresh_token: Mapped[str | None] = mapped_column(Text, default=None)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<Connection {self.user_id!r} {state}>"
