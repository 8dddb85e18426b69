"""Field mapping service - seeding and editing a user's mapping table."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.field_mapping import FieldMapping, MappingDirection
from ..sync.entities import ENTITY_SPECS, EntityType, get_spec

logger = logging.getLogger(__name__)


async def ensure_defaults(db: AsyncSession, user_id: str) -> int:
    """Seed the default mappings the first time a user syncs. Returns rows added."""
    stmt = select(FieldMapping.id).where(FieldMapping.user_id == user_id).limit(1)
    if (await db.execute(stmt)).first() is not None:
        return 0

    added = 0
    for entity_type, spec in ENTITY_SPECS.items():
        for external_field, local_field in spec.default_mappings:
            db.add(FieldMapping(
                user_id=user_id,
                entity_type=entity_type.value,
                local_field=local_field,
                external_field=external_field,
                direction=MappingDirection.FROM_EXTERNAL.value,
                is_enabled=True,
            ))
            added += 1
    await db.commit()
    logger.info("Seeded %d default field mappings for user %s", added, user_id)
    return added


async def list_mappings(
    db: AsyncSession,
    user_id: str,
    *,
    entity_type: str | None = None,
    enabled_only: bool = False,
) -> list[FieldMapping]:
    stmt = select(FieldMapping).where(FieldMapping.user_id == user_id)
    if entity_type:
        stmt = stmt.where(FieldMapping.entity_type == entity_type)
    if enabled_only:
        stmt = stmt.where(FieldMapping.is_enabled.is_(True))
    stmt = stmt.order_by(FieldMapping.entity_type, FieldMapping.local_field)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def validate_mapping(entity_type: str, local_field: str, external_field: str) -> None:
    """Raise ValueError when a mapping names an unknown entity type or field."""
    try:
        spec = get_spec(entity_type)
    except ValueError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None
    if external_field not in spec.external_fields:
        raise ValueError(
            f"Unsupported {entity_type} field '{external_field}'. "
            f"Supported: {', '.join(sorted(spec.external_fields))}"
        )
    if local_field not in spec.local_fields:
        raise ValueError(
            f"Unknown local field '{local_field}' for {entity_type}. "
            f"Valid: {', '.join(sorted(spec.local_fields))}"
        )


async def set_mapping(
    db: AsyncSession,
    user_id: str,
    entity_type: str,
    local_field: str,
    external_field: str,
    direction: str = MappingDirection.FROM_EXTERNAL.value,
    is_enabled: bool = True,
) -> FieldMapping:
    """Create or replace the enabled mapping for (entity_type, local_field)."""
    validate_mapping(entity_type, local_field, external_field)
    MappingDirection(direction)
    entity_type = EntityType(entity_type).value

    stmt = select(FieldMapping).where(
        FieldMapping.user_id == user_id,
        FieldMapping.entity_type == entity_type,
        FieldMapping.local_field == local_field,
    ).order_by(FieldMapping.is_enabled.desc())
    mapping = (await db.execute(stmt)).scalars().first()

    if mapping is None:
        mapping = FieldMapping(user_id=user_id, entity_type=entity_type, local_field=local_field)
        db.add(mapping)
    mapping.external_field = external_field
    mapping.direction = direction
    mapping.is_enabled = is_enabled

    await db.commit()
    await db.refresh(mapping)
    return mapping


async def disable_mapping(db: AsyncSession, user_id: str, entity_type: str, local_field: str) -> bool:
    stmt = select(FieldMapping).where(
        FieldMapping.user_id == user_id,
        FieldMapping.entity_type == entity_type,
        FieldMapping.local_field == local_field,
        FieldMapping.is_enabled.is_(True),
    )
    mapping = (await db.execute(stmt)).scalars().first()
    if mapping is None:
        return False
    mapping.is_enabled = False
    await db.commit()
    return True
