"""Field mapping between external CRM records and local models.

The resolver is built from a user's enabled FieldMapping rows. Inbound
(``from_external`` / ``bidirectional``) rows drive imports, outbound
(``to_external`` / ``bidirectional``) rows drive exports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.field_mapping import FieldMapping, MappingDirection
from ..services import mapping_svc
from .entities import EntitySpec, EntityType, clean_str, get_spec
from .errors import MappingError

logger = logging.getLogger(__name__)


@dataclass
class MappedRecord:
    """One external record translated into local column values."""

    entity_type: EntityType
    external_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    # Reference columns (company/contact/deal external ids) and per-type constants.
    links: dict[str, Any] = field(default_factory=dict)
    # Fields filled by a fallback rather than a mapped value; only used on insert.
    derived: set[str] = field(default_factory=set)


class FieldMappingResolver:
    """Translate external records through a user's mapping table."""

    def __init__(self, mappings: Iterable[FieldMapping]):
        self._inbound: dict[EntityType, list[tuple[str, str]]] = {t: [] for t in EntityType}
        self._outbound: dict[EntityType, list[tuple[str, str]]] = {t: [] for t in EntityType}

        for mapping in mappings:
            if not mapping.is_enabled:
                continue
            try:
                entity_type = EntityType(mapping.entity_type)
                direction = MappingDirection(mapping.direction)
            except ValueError:
                logger.warning("Skipping mapping with unknown type/direction: %r", mapping)
                continue

            spec = get_spec(entity_type)
            if mapping.external_field not in spec.extractors:
                logger.warning(
                    "Skipping mapping %s.%s -> %s: unsupported external field",
                    entity_type.value, mapping.external_field, mapping.local_field,
                )
                continue
            if mapping.local_field not in spec.local_fields:
                logger.warning(
                    "Skipping mapping %s.%s -> %s: unknown local field",
                    entity_type.value, mapping.external_field, mapping.local_field,
                )
                continue

            pair = (mapping.external_field, mapping.local_field)
            if direction.inbound:
                self._inbound[entity_type].append(pair)
            if direction.outbound:
                self._outbound[entity_type].append(pair)

    @classmethod
    async def load(cls, db: AsyncSession, user_id: str) -> "FieldMappingResolver":
        """Build a resolver from the user's mappings, seeding defaults on first use."""
        await mapping_svc.ensure_defaults(db, user_id)
        mappings = await mapping_svc.list_mappings(db, user_id, enabled_only=True)
        return cls(mappings)

    def inbound(self, entity_type: EntityType) -> list[tuple[str, str]]:
        return list(self._inbound[EntityType(entity_type)])

    def outbound(self, entity_type: EntityType) -> list[tuple[str, str]]:
        return list(self._outbound[EntityType(entity_type)])

    def map_record(self, entity_type: EntityType | str, record: Any) -> MappedRecord:
        """Map one external record to local field values.

        Raises:
            MappingError: If the record has no id or a required field cannot be derived
        """
        entity_type = EntityType(entity_type)
        spec = get_spec(entity_type)

        if not isinstance(record, dict):
            raise MappingError(f"Expected an object for {entity_type.value}, got {type(record).__name__}")
        external_id = clean_str(record.get("id"))
        if external_id is None:
            raise MappingError(f"{entity_type.value} record has no id")

        mapped = MappedRecord(entity_type=entity_type, external_id=external_id)
        try:
            for external_field, local_field in self._inbound[entity_type]:
                value = spec.extractors[external_field](record)
                if isinstance(value, str):
                    value = value.strip()
                # First mapping with a value wins when several target one column.
                if mapped.fields.get(local_field) in (None, ""):
                    mapped.fields[local_field] = value

            for column, extract in spec.links.items():
                mapped.links[column] = extract(record)
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            raise MappingError(f"Cannot map {entity_type.value} {external_id}: {e}", external_id) from e
        mapped.links.update(spec.constants)

        self._apply_fallback(spec, record, mapped)
        return mapped

    @staticmethod
    def _apply_fallback(spec: EntitySpec, record: dict, mapped: MappedRecord) -> None:
        required = spec.required_field
        if required is None or mapped.fields.get(required) not in (None, ""):
            return
        value = spec.fallback(record) if spec.fallback else None
        if value in (None, ""):
            raise MappingError(
                f"Cannot derive required field '{required}' for {spec.entity_type.value} {mapped.external_id}",
                mapped.external_id,
            )
        mapped.fields[required] = value
        mapped.derived.add(required)

    def map_to_external(self, entity_type: EntityType | str, obj: Any) -> dict[str, Any]:
        """Build an external create payload from a local object via outbound mappings.

        Users with no outbound mapping for the type get the default mappings
        applied in reverse.
        """
        entity_type = EntityType(entity_type)
        spec = get_spec(entity_type)
        payload: dict[str, Any] = {}

        pairs = self._outbound[entity_type] or list(spec.default_mappings)
        for external_field, local_field in pairs:
            writer = spec.writers.get(external_field)
            if writer is None:
                continue
            value = getattr(obj, local_field, None)
            if isinstance(value, str):
                value = value.strip()
            if value in (None, ""):
                continue
            writer(payload, value)
        return payload
