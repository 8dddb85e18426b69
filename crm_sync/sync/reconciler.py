"""Record reconciler - upserts mapped external records into local tables.

Per field of an existing record:

- external value empty: local value kept
- local value empty, or both equal: external value written
- both set and different: local value kept and a Conflict recorded

A page is written inside one SAVEPOINT. Any database error rolls the whole
page back and every record in it counts as failed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.customer import Customer
from ..models.deal import Deal
from .conflicts import ConflictStore
from .entities import EntitySpec, EntityType, get_spec
from .errors import MappingError, StoreError
from .field_mapper import FieldMappingResolver, MappedRecord

logger = logging.getLogger(__name__)


class RecordOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CONFLICTED = "conflicted"
    FAILED = "failed"


@dataclass
class ReconcileResult:
    outcome: RecordOutcome
    external_id: str | None = None
    record_id: uuid.UUID | None = None
    conflicted_fields: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class PageResult:
    entity_type: EntityType
    results: list[ReconcileResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def _count(self, outcome: RecordOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def created(self) -> int:
        return self._count(RecordOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self._count(RecordOutcome.UPDATED)

    @property
    def conflicted(self) -> int:
        return self._count(RecordOutcome.CONFLICTED)

    @property
    def failed(self) -> int:
        return self._count(RecordOutcome.FAILED)

    @property
    def success(self) -> int:
        return self.created + self.updated


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _date_text(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    return str(value).strip()[:10]


def values_equal(local: Any, external: Any) -> bool:
    """Compare a stored value with an incoming one.

    When either side is a number both compare numerically ("100" == 100.0).
    Dates compare by ISO form, strings with runs of whitespace collapsed.
    """
    numeric = (int, float)
    if isinstance(local, numeric) or isinstance(external, numeric):
        left, right = _as_number(local), _as_number(external)
        if left is not None and right is not None:
            return abs(left - right) < 1e-9

    if isinstance(local, (date, datetime)) or isinstance(external, (date, datetime)):
        return _date_text(local) == _date_text(external)

    return " ".join(str(local).split()) == " ".join(str(external).split())


class RecordReconciler:
    """Reconcile external records of any entity type for one user."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        resolver: FieldMappingResolver,
        conflicts: ConflictStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.user_id = user_id
        self.resolver = resolver
        self.conflicts = conflicts or ConflictStore(db, user_id)
        self._clock = clock

    async def reconcile(self, entity_type: EntityType | str, record: dict) -> ReconcileResult:
        page = await self.reconcile_page(entity_type, [record])
        return page.results[0]

    async def reconcile_page(self, entity_type: EntityType | str, records: Iterable[dict]) -> PageResult:
        """Map and upsert one page of records. Never raises for data problems."""
        entity_type = EntityType(entity_type)
        spec = get_spec(entity_type)
        result = PageResult(entity_type=entity_type)

        mapped: list[MappedRecord] = []
        for record in records:
            try:
                mapped.append(self.resolver.map_record(entity_type, record))
            except MappingError as e:
                logger.warning("Skipping %s record: %s", entity_type.value, e)
                result.results.append(
                    ReconcileResult(RecordOutcome.FAILED, external_id=e.external_id, error=str(e))
                )
                result.errors.append(str(e))

        if not mapped:
            return result

        try:
            outcomes = await self._write_page(spec, mapped)
        except StoreError as e:
            result.errors.append(str(e))
            result.results.extend(
                ReconcileResult(RecordOutcome.FAILED, external_id=m.external_id, error=str(e))
                for m in mapped
            )
        else:
            result.results.extend(outcomes)
        return result

    async def _write_page(self, spec: EntitySpec, mapped: list[MappedRecord]) -> list[ReconcileResult]:
        try:
            async with self.db.begin_nested():
                rows = await self._load_existing(spec.model, {m.external_id for m in mapped})
                customers, deals = await self._load_link_targets(mapped)
                outcomes = [
                    await self._upsert(spec, m, rows, customers, deals) for m in mapped
                ]
                await self.db.flush()
        except SQLAlchemyError as e:
            message = f"Failed to bulk import {len(mapped)} {spec.entity_type.value}: {e}"
            logger.error(message)
            raise StoreError(message) from e
        return outcomes

    async def _load_existing(self, model: type, external_ids: set[str]) -> dict[str, Any]:
        stmt = select(model).where(
            model.user_id == self.user_id,
            model.external_id.in_(external_ids),
        )
        result = await self.db.execute(stmt)
        return {row.external_id: row for row in result.scalars().all()}

    async def _load_link_targets(
        self, mapped: list[MappedRecord]
    ) -> tuple[dict[str, uuid.UUID], dict[str, uuid.UUID]]:
        customer_refs = {
            m.links.get(key)
            for m in mapped
            for key in ("company_external_id", "contact_external_id")
            if m.links.get(key)
        }
        deal_refs = {m.links["deal_external_id"] for m in mapped if m.links.get("deal_external_id")}

        customers: dict[str, uuid.UUID] = {}
        if customer_refs:
            stmt = select(Customer.external_id, Customer.id).where(
                Customer.user_id == self.user_id, Customer.external_id.in_(customer_refs)
            )
            customers = {ext: pk for ext, pk in (await self.db.execute(stmt)).all()}

        deals: dict[str, uuid.UUID] = {}
        if deal_refs:
            stmt = select(Deal.external_id, Deal.id).where(
                Deal.user_id == self.user_id, Deal.external_id.in_(deal_refs)
            )
            deals = {ext: pk for ext, pk in (await self.db.execute(stmt)).all()}

        return customers, deals

    def _link_values(
        self,
        spec: EntitySpec,
        mapped: MappedRecord,
        customers: dict[str, uuid.UUID],
        deals: dict[str, uuid.UUID],
    ) -> dict[str, Any]:
        values = dict(mapped.links)
        columns = spec.model.__table__.columns
        if "customer_id" in columns:
            company = mapped.links.get("company_external_id")
            contact = mapped.links.get("contact_external_id")
            values["customer_id"] = customers.get(company) or customers.get(contact)
        if "deal_id" in columns:
            values["deal_id"] = deals.get(mapped.links.get("deal_external_id"))
        return values

    async def _upsert(
        self,
        spec: EntitySpec,
        mapped: MappedRecord,
        rows: dict[str, Any],
        customers: dict[str, uuid.UUID],
        deals: dict[str, uuid.UUID],
    ) -> ReconcileResult:
        now = self._clock()
        links = self._link_values(spec, mapped, customers, deals)
        row = rows.get(mapped.external_id)

        if row is None:
            row = spec.model(
                user_id=self.user_id,
                external_id=mapped.external_id,
                last_synced_at=now,
                **mapped.fields,
                **links,
            )
            self.db.add(row)
            await self.db.flush()
            # Later duplicates in the same page update this row.
            rows[mapped.external_id] = row
            return ReconcileResult(RecordOutcome.CREATED, mapped.external_id, row.id)

        conflicted: list[str] = []
        for name, value in mapped.fields.items():
            if name in mapped.derived or is_empty(value):
                continue
            current = getattr(row, name)
            if is_empty(current) or values_equal(current, value):
                if current != value:
                    setattr(row, name, value)
                continue
            await self.conflicts.record(
                spec.entity_type.value, row.id, name, current, value, external_id=mapped.external_id
            )
            conflicted.append(name)

        for column, value in links.items():
            if value is not None and getattr(row, column) != value:
                setattr(row, column, value)
        row.last_synced_at = now

        if conflicted:
            logger.info(
                "Conflict on %s %s: %s", spec.entity_type.value, mapped.external_id, ", ".join(conflicted)
            )
            return ReconcileResult(RecordOutcome.CONFLICTED, mapped.external_id, row.id, conflicted)
        return ReconcileResult(RecordOutcome.UPDATED, mapped.external_id, row.id)
