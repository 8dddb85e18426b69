"""Tests for the sync orchestrator."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.config import SyncSettings
from crm_sync.models import BatchProgress, Connection, Customer, Deal, SyncRun
from crm_sync.models.base import utcnow
from crm_sync.models.sync_run import SyncRunStatus
from crm_sync.oauth.client import OAuthError
from crm_sync.schemas.sync import SyncRequest
from crm_sync.sync.errors import SyncAlreadyRunningError
from crm_sync.sync.sync_engine import SyncOrchestrator

from conftest import USER_ID, FakeTeamleaderClient, contact, deal


def _contacts(n: int) -> list[dict]:
    return [contact(f"c-{i}", first=f"C{i}") for i in range(n)]


async def _progress(db: AsyncSession, entity_type: str) -> BatchProgress:
    stmt = select(BatchProgress).where(
        BatchProgress.user_id == USER_ID, BatchProgress.entity_type == entity_type
    )
    progress = (await db.execute(stmt)).scalar_one()
    await db.refresh(progress)
    return progress


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _run_row(db: AsyncSession, run_id) -> SyncRun:
    run = await db.get(SyncRun, run_id)
    await db.refresh(run)
    return run


class TestPlan:
    def test_sync_defaults(self, db):
        plan = SyncOrchestrator(db).plan(SyncRequest(action="sync"))
        assert (plan.page_size, plan.max_pages) == (100, 15)
        assert plan.do_import and plan.do_export

    def test_full_import_defaults(self, db):
        plan = SyncOrchestrator(db).plan(SyncRequest(action="full_import"))
        assert (plan.page_size, plan.max_pages) == (250, 50)
        assert plan.do_import and not plan.do_export

    def test_export_only(self, db):
        plan = SyncOrchestrator(db).plan(SyncRequest(action="export"))
        assert not plan.do_import and plan.do_export

    def test_overrides_are_clamped(self, db):
        plan = SyncOrchestrator(db).plan(SyncRequest(action="import", batch_size=1000, max_pages=3))
        assert (plan.page_size, plan.max_pages) == (250, 3)

    def test_full_sync_resets(self, db):
        assert SyncOrchestrator(db).plan(SyncRequest(full_sync=True)).reset is True

    def test_smart_sync_imports_only(self, db):
        plan = SyncOrchestrator(db).plan(SyncRequest(action="smart_sync"))
        assert (plan.page_size, plan.max_pages) == (100, 15)
        assert plan.do_import and not plan.do_export
        assert plan.updated_since is None


class TestTokenFailure:
    @pytest.mark.asyncio
    async def test_no_connection_short_circuits(self, db, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(3)

        response = await orchestrator.run(USER_ID, SyncRequest(action="import"))

        assert response.status == "failed"
        assert "connect your account" in response.error
        assert response.processed == 0
        assert fake_client.calls == []
        assert await _count(db, BatchProgress) == 0

        run = await _run_row(db, response.sync_run_id)
        assert run.status == "failed"
        assert run.error_details["error"] == response.error
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_refresh_failure_short_circuits(self, db, fake_client):
        conn = Connection(
            user_id=USER_ID,
            access_token="old",
            refresh_token="r",
            token_expires_at=utcnow() - timedelta(hours=1),
        )
        db.add(conn)
        await db.commit()
        oauth = MagicMock()
        oauth.refresh_tokens = AsyncMock(side_effect=OAuthError("Token refresh failed: 401"))
        orchestrator = SyncOrchestrator(
            db, oauth_client=oauth, client_factory=lambda token: fake_client, sleep=AsyncMock()
        )

        response = await orchestrator.run(USER_ID, SyncRequest(action="import"))

        assert response.status == "failed"
        assert "reconnect" in response.error
        assert fake_client.calls == []
        await db.refresh(conn)
        assert conn.is_active is False


class TestImport:
    @pytest.mark.asyncio
    async def test_all_types_in_fixed_order(self, db, connection, orchestrator, fake_client):
        fake_client.records.update({
            "contacts": _contacts(3),
            "companies": [{"id": "co-1", "name": "Acme"}],
            "deals": [deal("d-1", lead={"customer": {"type": "company", "id": "co-1"}})],
            "invoices": [{"id": "i-1", "invoice_number": "2024/1", "deal": {"id": "d-1"}}],
            "quotations": [{"id": "q-1", "name": "Offer"}],
            "projects": [{"id": "p-1", "title": "Build"}],
        })

        response = await orchestrator.run(USER_ID, SyncRequest(action="import"))

        assert response.status == "completed"
        assert response.error is None
        assert response.processed == 8
        assert response.success == 8
        assert response.failed == 0
        assert [c[0] for c in fake_client.calls] == [
            "contacts", "companies", "deals", "invoices", "quotations", "projects"
        ]

        for entity_type in ("contacts", "companies", "deals", "invoices", "quotes", "projects"):
            progress = await _progress(db, entity_type)
            assert progress.status == "completed"
            assert progress.stop_reason == "exhausted"

        run = await _run_row(db, response.sync_run_id)
        assert run.records_processed == 8
        assert run.error_details["entity_types"]["contacts"]["stop_reason"] == "exhausted"

    @pytest.mark.asyncio
    async def test_sync_type_limits_scope(self, db, connection, orchestrator, fake_client):
        fake_client.records.update({"contacts": _contacts(2), "deals": [deal("d-1")]})

        response = await orchestrator.run(USER_ID, SyncRequest(action="import", sync_type="deals"))

        assert response.processed == 1
        assert {c[0] for c in fake_client.calls} == {"deals"}
        assert await _count(db, Customer) == 0

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db, connection, orchestrator, fake_client):
        fake_client.records.update({"contacts": _contacts(5), "deals": [deal("d-1"), deal("d-2")]})
        request = SyncRequest(action="import")

        first = await orchestrator.run(USER_ID, request)
        second = await orchestrator.run(USER_ID, request)

        assert first.success == second.success == 7
        assert second.conflicted == 0
        assert await _count(db, Customer) == 5
        assert await _count(db, Deal) == 2

    @pytest.mark.asyncio
    async def test_page_ceiling_then_continue(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(35)
        request = SyncRequest(action="import", sync_type="contacts", batch_size=10, max_pages=2)

        first = await orchestrator.run(USER_ID, request)

        assert first.status == "completed"
        assert first.processed == 20
        progress = await _progress(db, "contacts")
        assert progress.status == "active"
        assert progress.stop_reason == "page_limit"
        assert progress.last_imported_page == 2
        assert progress.total_imported == 20
        assert progress.total_estimated == 35
        assert progress.last_imported_id == "c-19"

        second = await orchestrator.run(USER_ID, request)

        assert second.processed == 15
        assert fake_client.pages_requested("contacts") == [1, 2, 3, 4]
        progress = await _progress(db, "contacts")
        assert progress.status == "completed"
        assert progress.stop_reason == "exhausted"
        assert progress.total_imported == 35
        assert await _count(db, Customer) == 35

    @pytest.mark.asyncio
    async def test_full_sync_restarts_from_first_page(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(35)
        limited = SyncRequest(action="import", sync_type="contacts", batch_size=10, max_pages=2)
        await orchestrator.run(USER_ID, limited)

        await orchestrator.run(USER_ID, limited.model_copy(update={"full_sync": True}))

        assert fake_client.pages_requested("contacts") == [1, 2, 1, 2]
        assert (await _progress(db, "contacts")).last_imported_page == 2
        assert await _count(db, Customer) == 20

    @pytest.mark.asyncio
    async def test_completed_progress_starts_over(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(3)
        request = SyncRequest(action="import", sync_type="contacts")

        await orchestrator.run(USER_ID, request)
        await orchestrator.run(USER_ID, request)

        assert fake_client.pages_requested("contacts") == [1, 1]


class TestEntityTypeIsolation:
    @pytest.mark.asyncio
    async def test_api_error_only_stops_its_entity_type(self, db, connection, orchestrator, fake_client, api_error):
        fake_client.records.update({
            "contacts": _contacts(2),
            "deals": [deal(f"d-{i}") for i in range(15)],
            "projects": [{"id": "p-1", "title": "Build"}],
        })
        fake_client.errors[("deals", 2)] = api_error
        request = SyncRequest(action="import", batch_size=10)

        response = await orchestrator.run(USER_ID, request)

        assert response.status == "completed"
        assert response.processed == 13
        assert response.failed == 1
        assert response.success == 13
        assert "API error importing deals: 500 Internal server error" in response.errors
        deals = await _progress(db, "deals")
        assert deals.status == "failed"
        assert deals.stop_reason == "error"
        assert deals.last_imported_page == 1
        assert deals.error_details["status_code"] == 500
        run = await db.get(SyncRun, response.sync_run_id)
        assert run.records_failed == 1
        assert run.error_details["entity_types"]["deals"]["failed"] == 1
        assert (await _progress(db, "projects")).status == "completed"

        # The failed type resumes from the page that failed.
        del fake_client.errors[("deals", 2)]
        await orchestrator.run(USER_ID, request)
        assert fake_client.pages_requested("deals") == [1, 2, 2]
        assert (await _progress(db, "deals")).status == "completed"
        assert await _count(db, Deal) == 15


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_continues_with_original_page_size(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(35)
        await orchestrator.run(
            USER_ID, SyncRequest(action="import", sync_type="contacts", batch_size=10, max_pages=2)
        )

        response = await orchestrator.resume(USER_ID, "contacts")

        assert response.status == "completed"
        assert response.processed == 15
        assert fake_client.calls[2:] == [("contacts", 10, 3), ("contacts", 10, 4)]
        run = await _run_row(db, response.sync_run_id)
        assert run.sync_type == "resume"
        assert run.scope == "contacts"

    @pytest.mark.asyncio
    async def test_resume_completed_is_noop(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(3)
        await orchestrator.run(USER_ID, SyncRequest(action="import", sync_type="contacts"))
        calls = len(fake_client.calls)

        response = await orchestrator.resume(USER_ID, "contacts")

        assert response.status == "completed"
        assert response.processed == 0
        assert len(fake_client.calls) == calls
        run = await _run_row(db, response.sync_run_id)
        assert run.error_details["entity_types"]["contacts"]["skipped"] == "already completed"

    @pytest.mark.asyncio
    async def test_resume_without_progress_imports_from_start(self, db, connection, orchestrator, fake_client):
        fake_client.records["projects"] = [{"id": "p-1", "title": "Build"}]

        response = await orchestrator.resume(USER_ID, "projects")

        assert response.processed == 1
        assert fake_client.calls == [("projects", 250, 1)]


class TestSmartSync:
    @pytest.mark.asyncio
    async def test_updated_since_filter_reaches_list(self, db, connection, orchestrator, fake_client):
        fake_client.records.update({
            "contacts": _contacts(2),
            "companies": [{"id": "co-1", "name": "Acme"}],
            "deals": [deal("d-1"), deal("d-2")],
            "quotations": [{"id": "q-1", "name": "Offer"}],
            "projects": [{"id": "p-1", "title": "Build"}],
        })

        response = await orchestrator.run(USER_ID, SyncRequest(action="smart_sync"))

        assert response.status == "completed"
        assert response.processed == 4
        assert [c[0] for c in fake_client.calls] == ["companies", "deals", "invoices", "quotations"]
        since = {filters["updated_since"] for _, filters in fake_client.filters_seen}
        assert len(since) == 1
        expected = utcnow() - timedelta(hours=24)
        assert abs((datetime.fromisoformat(since.pop()) - expected).total_seconds()) < 60

    @pytest.mark.asyncio
    async def test_leaves_batch_progress_alone(self, db, connection, orchestrator, fake_client):
        fake_client.records["deals"] = [deal("d-1")]

        response = await orchestrator.run(USER_ID, SyncRequest(action="smart_sync", sync_type="deals"))

        assert response.processed == 1
        assert await _count(db, BatchProgress) == 0
        run = await _run_row(db, response.sync_run_id)
        assert run.sync_type == "smart_sync"
        assert run.error_details["entity_types"]["deals"]["stop_reason"] == "exhausted"
        assert "updated_since" in run.error_details["entity_types"]["deals"]

    @pytest.mark.asyncio
    async def test_explicit_type_is_used_as_given(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(2)

        response = await orchestrator.run(USER_ID, SyncRequest(action="smart_sync", sync_type="contacts"))

        assert response.processed == 2
        assert {c[0] for c in fake_client.calls} == {"contacts"}

    @pytest.mark.asyncio
    async def test_window_starts_at_last_clean_smart_sync(self, db, connection, orchestrator, fake_client):
        clean_start = utcnow() - timedelta(hours=2)
        db.add_all([
            SyncRun(
                user_id=USER_ID, sync_type="smart_sync", scope="deals", status="completed",
                started_at=clean_start, completed_at=clean_start,
            ),
            SyncRun(
                user_id=USER_ID, sync_type="smart_sync", scope="deals", status="completed",
                records_failed=1, started_at=utcnow() - timedelta(hours=1),
            ),
            SyncRun(
                user_id=USER_ID, sync_type="import", scope="deals", status="completed",
                started_at=utcnow() - timedelta(minutes=5),
            ),
        ])
        await db.commit()

        await orchestrator.run(USER_ID, SyncRequest(action="smart_sync", sync_type="deals"))

        assert fake_client.filters_seen == [
            ("deals", {"updated_since": clean_start.isoformat(timespec="seconds")})
        ]

    @pytest.mark.asyncio
    async def test_lookback_hours_setting(self, db, connection, fake_client):
        orchestrator = SyncOrchestrator(
            db,
            config=SyncSettings(smart_sync_lookback_hours=2),
            client_factory=lambda token: fake_client,
            sleep=AsyncMock(),
        )

        await orchestrator.run(USER_ID, SyncRequest(action="smart_sync", sync_type="deals"))

        since = datetime.fromisoformat(fake_client.filters_seen[0][1]["updated_since"])
        assert abs((since - (utcnow() - timedelta(hours=2))).total_seconds()) < 60

    @pytest.mark.asyncio
    async def test_full_and_resume_runs_send_no_filter(self, db, connection, orchestrator, fake_client):
        fake_client.records["contacts"] = _contacts(15)
        await orchestrator.run(
            USER_ID, SyncRequest(action="import", sync_type="contacts", batch_size=10, max_pages=1)
        )
        await orchestrator.resume(USER_ID, "contacts")
        await orchestrator.run(USER_ID, SyncRequest(action="full_import", sync_type="deals"))

        assert len(fake_client.filters_seen) == 3
        assert all(filters is None for _, filters in fake_client.filters_seen)

    @pytest.mark.asyncio
    async def test_api_error_counts_as_failed(self, db, connection, orchestrator, fake_client, api_error):
        fake_client.records["quotations"] = [{"id": "q-1", "name": "Offer"}]
        fake_client.errors[("deals", 1)] = api_error

        response = await orchestrator.run(USER_ID, SyncRequest(action="smart_sync"))

        assert response.status == "completed"
        assert response.failed == 1
        assert response.success == 1
        assert any("deals" in e for e in response.errors)


class TestRunGuard:
    @pytest.mark.asyncio
    async def test_running_run_blocks_new_run(self, db, connection, orchestrator):
        db.add(SyncRun(user_id=USER_ID, sync_type="sync", scope="all", status="running", started_at=utcnow()))
        await db.commit()

        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.run(USER_ID, SyncRequest())

        assert await _count(db, SyncRun) == 1

    @pytest.mark.asyncio
    async def test_stale_run_is_closed(self, db, connection, orchestrator, fake_client):
        stale = SyncRun(
            user_id=USER_ID, sync_type="sync", scope="all", status="running",
            started_at=utcnow() - timedelta(hours=3),
        )
        db.add(stale)
        await db.commit()

        response = await orchestrator.run(USER_ID, SyncRequest(action="import"))

        assert response.status == "completed"
        await db.refresh(stale)
        assert stale.status == "failed"
        assert stale.error_details["error"].startswith("stale")

    @pytest.mark.asyncio
    async def test_other_users_are_not_blocked(self, db, connection, orchestrator):
        db.add(SyncRun(user_id="other", sync_type="sync", scope="all", status="running", started_at=utcnow()))
        await db.commit()

        response = await orchestrator.run(USER_ID, SyncRequest(action="import"))
        assert response.status == "completed"


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_unexpected_error_fails_run_and_propagates(self, db, connection):
        def broken_factory(token):
            raise RuntimeError("client exploded")

        orchestrator = SyncOrchestrator(db, client_factory=broken_factory, sleep=AsyncMock())

        with pytest.raises(RuntimeError):
            await orchestrator.run(USER_ID, SyncRequest(action="import"))

        run = (await db.execute(select(SyncRun))).scalar_one()
        await db.refresh(run)
        assert run.status == "failed"
        assert run.error_details["error"] == "client exploded"

    def test_finished_run_is_immutable(self):
        run = SyncRun(user_id=USER_ID, sync_type="sync", scope="all", status="running")
        run.finish(SyncRunStatus.COMPLETED, processed=1, success=1)

        with pytest.raises(RuntimeError):
            run.finish(SyncRunStatus.FAILED)

    def test_finish_requires_terminal_status(self):
        run = SyncRun(user_id=USER_ID, sync_type="sync", scope="all", status="running")
        with pytest.raises(ValueError):
            run.finish(SyncRunStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_custom_settings(self, db, connection):
        client = FakeTeamleaderClient({"contacts": _contacts(7)})
        config = SyncSettings(sync_batch_size=3, sync_max_pages=2)
        orchestrator = SyncOrchestrator(db, config=config, client_factory=lambda token: client, sleep=AsyncMock())

        response = await orchestrator.run(USER_ID, SyncRequest(action="import", sync_type="contacts"))

        assert response.processed == 6
        assert client.calls == [("contacts", 3, 1), ("contacts", 3, 2)]
