"""Local -> external CRM exporter.

Pushes locally created customers (no external_id yet) to ``contacts.add`` and
stores the returned id, so the next import updates instead of duplicating.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select

from ..api.client import ApiError
from ..models.base import utcnow
from ..models.customer import Customer
from .entities import EntityType

if TYPE_CHECKING:
    from .sync_engine import SyncContext

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    processed: int = 0
    exported: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def split_name(name: str | None) -> tuple[str | None, str | None]:
    """Split "Ada Lovelace King" into ("Ada", "Lovelace King")."""
    parts = (name or "").split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], " ".join(parts[1:])


async def export_customers(ctx: "SyncContext") -> ExportResult:
    """Create an external contact for every local contact without an external id."""
    result = ExportResult()

    stmt = (
        select(Customer)
        .where(
            Customer.user_id == ctx.user_id,
            Customer.external_id.is_(None),
            Customer.customer_type == "contact",
        )
        .order_by(Customer.created_at)
    )
    customers = list((await ctx.db.execute(stmt)).scalars().all())

    for customer in customers:
        result.processed += 1
        payload = ctx.resolver.map_to_external(EntityType.CONTACTS, customer)
        if not payload.get("first_name") and not payload.get("last_name"):
            first, last = split_name(customer.name)
            if first:
                payload["first_name"] = first
            payload["last_name"] = last or customer.email or "Unknown"

        try:
            new_id = await ctx.client.add_contact(payload)
        except ApiError as e:
            result.failed += 1
            result.errors.append(f"Failed to export customer {customer.name}: {e}")
            continue

        if not new_id:
            result.failed += 1
            result.errors.append(f"Failed to export customer {customer.name}: no id returned")
            continue

        customer.external_id = str(new_id)
        customer.last_synced_at = utcnow()
        result.exported += 1

    await ctx.db.commit()
    if result.processed:
        logger.info(
            "Exported %d/%d customers for user %s", result.exported, result.processed, ctx.user_id
        )
    return result
