"""Conflict store - field-level divergences between local and external values."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.conflict import Conflict, ConflictResolution
from .errors import ConflictAlreadyResolvedError, ConflictNotFoundError

logger = logging.getLogger(__name__)


def stringify(value: Any) -> str | None:
    """Render a column value the way it is stored on a Conflict row."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ConflictStore:
    """Record, list and resolve conflicts for one user.

    Writes go through the caller's session and are not committed here, so a
    conflict recorded during a page rolls back with that page. ``resolve``
    commits since it is a standalone operation.
    """

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def record(
        self,
        record_type: str,
        record_id: uuid.UUID,
        field: str,
        local_value: Any,
        external_value: Any,
        external_id: str | None = None,
    ) -> tuple[Conflict, bool]:
        """Record a conflict unless an equivalent one exists. Returns (conflict, created).

        A pending conflict for the same field is updated in place when the
        external value moved on. A resolved conflict with the same external
        value is left alone, so a decision is never reopened by a replay.
        """
        local_text = stringify(local_value)
        external_text = stringify(external_value)

        stmt = (
            select(Conflict)
            .where(
                Conflict.user_id == self.user_id,
                Conflict.record_type == record_type,
                Conflict.record_id == record_id,
                Conflict.field == field,
            )
            .order_by(Conflict.created_at.desc())
        )
        existing = list((await self.db.execute(stmt)).scalars().all())

        for conflict in existing:
            if conflict.is_pending:
                if conflict.external_value != external_text or conflict.local_value != local_text:
                    conflict.local_value = local_text
                    conflict.external_value = external_text
                return conflict, False

        for conflict in existing:
            if conflict.external_value == external_text:
                return conflict, False

        conflict = Conflict(
            user_id=self.user_id,
            record_type=record_type,
            record_id=record_id,
            external_id=external_id,
            field=field,
            local_value=local_text,
            external_value=external_text,
            resolution=ConflictResolution.PENDING.value,
        )
        self.db.add(conflict)
        return conflict, True

    async def list_conflicts(
        self,
        resolution: str | None = None,
        record_type: str | None = None,
        limit: int = 100,
    ) -> list[Conflict]:
        stmt = select(Conflict).where(Conflict.user_id == self.user_id)
        if resolution:
            stmt = stmt.where(Conflict.resolution == ConflictResolution(resolution).value)
        if record_type:
            stmt = stmt.where(Conflict.record_type == record_type)
        stmt = stmt.order_by(Conflict.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get(self, conflict_id: uuid.UUID) -> Conflict:
        conflict = await self.db.get(Conflict, conflict_id)
        if conflict is None or conflict.user_id != self.user_id:
            raise ConflictNotFoundError(f"Conflict {conflict_id} not found")
        return conflict

    async def resolve(self, conflict_id: uuid.UUID, resolution: str) -> Conflict:
        """Record a decision on a pending conflict. The local record is not modified.

        Raises:
            ValueError: If resolution is not use_local / use_external
            ConflictNotFoundError: If the conflict does not exist for this user
            ConflictAlreadyResolvedError: If a decision was already recorded
        """
        decision = ConflictResolution(resolution)
        if decision == ConflictResolution.PENDING:
            raise ValueError("Resolution must be use_local or use_external")

        conflict = await self.get(conflict_id)
        if not conflict.is_pending:
            raise ConflictAlreadyResolvedError(conflict.id, conflict.resolution)

        conflict.resolution = decision.value
        conflict.resolved_at = utcnow()
        await self.db.commit()
        logger.info("Conflict %s (%s.%s) resolved: %s", conflict.id, conflict.record_type, conflict.field, decision.value)
        return conflict
