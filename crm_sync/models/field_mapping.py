"""Field mapping model - user-editable external field -> local field table."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin


class MappingDirection(str, Enum):
    FROM_EXTERNAL = "from_external"
    TO_EXTERNAL = "to_external"
    BIDIRECTIONAL = "bidirectional"

    @property
    def inbound(self) -> bool:
        return self in (MappingDirection.FROM_EXTERNAL, MappingDirection.BIDIRECTIONAL)

    @property
    def outbound(self) -> bool:
        return self in (MappingDirection.TO_EXTERNAL, MappingDirection.BIDIRECTIONAL)


class FieldMapping(UUIDMixin, TimestampMixin, OwnerMixin, Base):
    __tablename__ = "crm_field_mapping"
    __table_args__ = (
        Index(
            "uq_crm_field_mapping_enabled_local",
            "user_id",
            "entity_type",
            "local_field",
            unique=True,
            sqlite_where=text("is_enabled"),
            postgresql_where=text("is_enabled"),
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(30), index=True)  # contacts, companies, ...
    local_field: Mapped[str] = mapped_column(String(100))
    external_field: Mapped[str] = mapped_column(String(100))
    direction: Mapped[str] = mapped_column(
        String(20), default=MappingDirection.FROM_EXTERNAL.value
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<FieldMapping {self.entity_type}: {self.external_field} -> {self.local_field}>"
