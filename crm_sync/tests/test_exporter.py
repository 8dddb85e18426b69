"""Tests for the local -> external customer export."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.api.client import ApiError
from crm_sync.models import Customer
from crm_sync.schemas.sync import SyncRequest
from crm_sync.services import mapping_svc
from crm_sync.sync.exporter import export_customers, split_name
from crm_sync.sync.field_mapper import FieldMappingResolver
from crm_sync.sync.sync_engine import SyncContext

from conftest import USER_ID, contact


@pytest_asyncio.fixture
async def local_customers(db: AsyncSession):
    rows = [
        Customer(user_id=USER_ID, name="Grace Hopper", email="grace@example.com", phone="+1 555"),
        Customer(user_id=USER_ID, name="Cher", customer_type="contact"),
        Customer(user_id=USER_ID, name="Acme", customer_type="company"),
        Customer(user_id=USER_ID, name="Synced", external_id="c-known"),
        Customer(user_id="other", name="Someone Else"),
    ]
    db.add_all(rows)
    await db.commit()
    return rows


async def _context(db: AsyncSession, connection, client) -> SyncContext:
    resolver = await FieldMappingResolver.load(db, USER_ID)
    return SyncContext(user_id=USER_ID, db=db, connection=connection, client=client, resolver=resolver)


def test_split_name():
    assert split_name("Ada Lovelace King") == ("Ada", "Lovelace King")
    assert split_name("Cher") == (None, "Cher")
    assert split_name("  ") == (None, None)
    assert split_name(None) == (None, None)


@pytest.mark.asyncio
async def test_exports_unsynced_contacts_only(db, connection, fake_client, local_customers):
    ctx = await _context(db, connection, fake_client)

    result = await export_customers(ctx)

    assert result.processed == 2
    assert result.exported == 2
    assert result.failed == 0
    payloads = sorted(fake_client.added, key=lambda p: p["last_name"])
    assert payloads == [
        {"last_name": "Cher"},
        {
            "first_name": "Grace",
            "last_name": "Hopper",
            "emails": [{"type": "primary", "email": "grace@example.com"}],
            "telephones": [{"type": "phone", "number": "+1 555"}],
        },
    ]

    grace = local_customers[0]
    await db.refresh(grace)
    assert grace.external_id.startswith("tl-new-")
    assert grace.last_synced_at is not None

    company = local_customers[2]
    await db.refresh(company)
    assert company.external_id is None


@pytest.mark.asyncio
async def test_outbound_mapping_controls_payload(db, connection, fake_client, local_customers):
    await mapping_svc.ensure_defaults(db, USER_ID)
    await mapping_svc.set_mapping(db, USER_ID, "contacts", "email", "email", direction="bidirectional")
    ctx = await _context(db, connection, fake_client)

    await export_customers(ctx)

    grace_payload = next(p for p in fake_client.added if p["last_name"] == "Hopper")
    assert grace_payload == {
        "emails": [{"type": "primary", "email": "grace@example.com"}],
        "first_name": "Grace",
        "last_name": "Hopper",
    }


@pytest.mark.asyncio
async def test_api_error_counts_record_as_failed(db, connection, fake_client, local_customers):
    fake_client.add_error = ApiError("Validation failed", status_code=422)
    ctx = await _context(db, connection, fake_client)

    result = await export_customers(ctx)

    assert result.processed == 2
    assert result.failed == 2
    assert "Failed to export customer Grace Hopper: 422 Validation failed" in result.errors
    unsynced = select(Customer).where(Customer.user_id == USER_ID, Customer.external_id.is_(None))
    assert len((await db.execute(unsynced)).scalars().all()) == 3


@pytest.mark.asyncio
async def test_sync_action_imports_then_exports(db, connection, orchestrator, fake_client, local_customers):
    fake_client.records["contacts"] = [contact("c-1")]

    response = await orchestrator.run(USER_ID, SyncRequest(action="sync", sync_type="contacts"))

    assert response.status == "completed"
    assert response.processed == 3
    assert response.success == 3
    assert len(fake_client.added) == 2


@pytest.mark.asyncio
async def test_export_action_skips_import(db, connection, orchestrator, fake_client, local_customers):
    fake_client.records["contacts"] = [contact("c-1")]

    response = await orchestrator.run(USER_ID, SyncRequest(action="export"))

    assert fake_client.calls == []
    assert response.processed == 2
    assert response.success == 2


@pytest.mark.asyncio
async def test_export_skipped_when_contacts_out_of_scope(db, connection, orchestrator, fake_client, local_customers):
    response = await orchestrator.run(USER_ID, SyncRequest(action="sync", sync_type="deals"))

    assert response.status == "completed"
    assert fake_client.added == []


@pytest.mark.asyncio
async def test_export_action_ignores_sync_type(db, connection, orchestrator, fake_client, local_customers):
    response = await orchestrator.run(USER_ID, SyncRequest(action="export", sync_type="companies"))

    assert response.status == "completed"
    assert fake_client.calls == []
    assert response.success == 2
    assert len(fake_client.added) == 2
