"""Sync orchestrator - drives one sync run across entity types.

A run moves running -> completed | failed and is never revisited. Each entity
type keeps a BatchProgress cursor that is committed after every page, so an
interrupted, ceiling-limited or failed import continues where it stopped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..api.client import ApiError, TeamleaderClient
from ..config import SyncSettings, settings as default_settings
from ..models.base import as_utc, utcnow
from ..models.batch_progress import BatchProgress, ProgressStatus, StopReason
from ..models.connection import Connection
from ..models.sync_run import SyncRun, SyncRunStatus
from ..oauth.client import OAuthClient
from ..schemas.sync import SyncRequest, SyncResponse
from .entities import EntityType, resolve_scope
from .errors import SyncAlreadyRunningError, TokenError
from .exporter import export_customers
from .fetcher import PaginatedFetcher, Sleep, clamp_page_size
from .field_mapper import FieldMappingResolver
from .reconciler import PageResult, RecordReconciler
from .token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one run needs, passed explicitly to each component."""

    user_id: str
    db: AsyncSession
    connection: Connection
    client: TeamleaderClient
    resolver: FieldMappingResolver


@dataclass
class RunPlan:
    page_size: int
    max_pages: int
    do_import: bool = True
    do_export: bool = False
    reset: bool = False
    updated_since: datetime | None = None


@dataclass
class _Totals:
    processed: int = 0
    success: int = 0
    failed: int = 0
    conflicted: int = 0
    errors: list[str] = field(default_factory=list)
    entity_types: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add_page(self, page: PageResult) -> None:
        self.processed += page.processed
        self.success += page.success
        self.failed += page.failed
        self.conflicted += page.conflicted
        self.errors.extend(page.errors)

    def details(self, error: str | None = None, **extra: Any) -> dict[str, Any]:
        return {"error": error, "errors": list(self.errors), "entity_types": self.entity_types, **extra}


class SyncOrchestrator:
    """Run imports/exports for a user against the external CRM.

    Usage:
        orchestrator = SyncOrchestrator(db)
        response = await orchestrator.run(user_id, SyncRequest(action="import"))
        response = await orchestrator.resume(user_id, "deals")
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        config: SyncSettings | None = None,
        oauth_client: OAuthClient | None = None,
        client_factory: Callable[[str], Any] | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.db = db
        self.config = config or default_settings
        self._oauth_client = oauth_client
        self._client_factory = client_factory or (
            lambda token: TeamleaderClient.from_settings(token, self.config)
        )
        self._sleep = sleep

    def plan(self, request: SyncRequest) -> RunPlan:
        """Page size, ceiling and phases for an action, with request overrides."""
        if request.action == "full_import":
            page_size, max_pages = self.config.full_import_batch_size, self.config.full_import_max_pages
        else:
            page_size, max_pages = self.config.sync_batch_size, self.config.sync_max_pages

        return RunPlan(
            page_size=clamp_page_size(request.batch_size or page_size, self.config.max_page_size),
            max_pages=request.max_pages or max_pages,
            do_import=request.action != "export",
            do_export=request.action in ("sync", "export"),
            reset=request.full_sync,
        )

    async def run(self, user_id: str, request: SyncRequest) -> SyncResponse:
        """Execute one sync run.

        Raises:
            SyncAlreadyRunningError: If the user has a run in progress
        """
        await self._guard(user_id)
        plan = self.plan(request)
        incremental = request.action == "smart_sync"
        if incremental:
            plan.updated_since = await self._changes_since(user_id, request.sync_type)
        run = await self._start_run(user_id, request.action, request.sync_type)
        return await self._execute(run, resolve_scope(request.sync_type, incremental=incremental), plan)

    async def resume(self, user_id: str, entity_type: EntityType | str) -> SyncResponse:
        """Continue one entity type's import from its last committed page.

        Raises:
            SyncAlreadyRunningError: If the user has a run in progress
        """
        entity_type = EntityType(entity_type)
        await self._guard(user_id)
        run = await self._start_run(user_id, "resume", entity_type.value)

        progress = await self._get_progress(user_id, entity_type, create=False)
        if progress is not None and progress.status == ProgressStatus.COMPLETED.value:
            logger.info("Nothing to resume for %s/%s: import already complete", user_id, entity_type.value)
            totals = _Totals()
            totals.entity_types[entity_type.value] = {
                "stop_reason": progress.stop_reason,
                "pages": 0,
                "processed": 0,
                "skipped": "already completed",
            }
            run.finish(SyncRunStatus.COMPLETED, error_details=totals.details())
            await self.db.commit()
            return self._response(run, totals)

        plan = self.plan(SyncRequest(action="full_import", sync_type=entity_type.value))
        return await self._execute(run, [entity_type], plan)

    # -- run lifecycle -------------------------------------------------------

    async def _guard(self, user_id: str) -> None:
        stmt = select(SyncRun).where(
            SyncRun.user_id == user_id,
            SyncRun.status == SyncRunStatus.RUNNING.value,
        )
        running = list((await self.db.execute(stmt)).scalars().all())
        if not running:
            return

        stale_after = timedelta(seconds=self.config.sync_run_stale_after_seconds)
        now = utcnow()
        for run in running:
            if now - as_utc(run.started_at) < stale_after:
                raise SyncAlreadyRunningError(user_id, run.id)

        for run in running:
            logger.warning("Closing stale sync run %s for user %s", run.id, user_id)
            run.finish(
                SyncRunStatus.FAILED,
                processed=run.records_processed,
                success=run.records_success,
                failed=run.records_failed,
                conflicted=run.records_conflicted,
                error_details={"error": "stale: run did not finish", "errors": [], "entity_types": {}},
            )
        await self.db.commit()

    async def _start_run(self, user_id: str, action: str, scope: str) -> SyncRun:
        run = SyncRun(
            user_id=user_id,
            sync_type=action,
            scope=scope,
            status=SyncRunStatus.RUNNING.value,
            started_at=utcnow(),
        )
        self.db.add(run)
        await self.db.commit()
        logger.info("Sync run %s started: user=%s action=%s scope=%s", run.id, user_id, action, scope)
        return run

    async def _changes_since(self, user_id: str, scope: str) -> datetime:
        """Start of the last clean smart sync for this scope, else the lookback window."""
        stmt = (
            select(SyncRun.started_at)
            .where(
                SyncRun.user_id == user_id,
                SyncRun.sync_type == "smart_sync",
                SyncRun.scope == scope,
                SyncRun.status == SyncRunStatus.COMPLETED.value,
                SyncRun.records_failed == 0,
            )
            .order_by(SyncRun.started_at.desc())
            .limit(1)
        )
        last_started = (await self.db.execute(stmt)).scalars().first()
        if last_started is not None:
            return as_utc(last_started)
        return utcnow() - timedelta(hours=self.config.smart_sync_lookback_hours)

    async def _execute(self, run: SyncRun, entity_types: list[EntityType], plan: RunPlan) -> SyncResponse:
        totals = _Totals()
        try:
            token_manager = TokenManager(self.db, oauth_client=self._oauth_client)
            try:
                connection, token = await token_manager.get_token(run.user_id)
            except TokenError as e:
                logger.warning("Sync run %s aborted: %s", run.id, e)
                run.finish(SyncRunStatus.FAILED, error_details=totals.details(error=str(e)))
                await self.db.commit()
                return self._response(run, totals, error=str(e))

            resolver = await FieldMappingResolver.load(self.db, run.user_id)
            async with self._client_factory(token) as client:
                ctx = SyncContext(
                    user_id=run.user_id,
                    db=self.db,
                    connection=connection,
                    client=client,
                    resolver=resolver,
                )
                if plan.do_import:
                    for entity_type in entity_types:
                        if plan.updated_since is not None:
                            await self._import_changes(ctx, entity_type, plan, totals)
                        else:
                            await self._import_entity(ctx, entity_type, plan, totals)
                # A sync exports alongside its contacts import; an export run ignores the scope.
                if plan.do_export and (not plan.do_import or EntityType.CONTACTS in entity_types):
                    await self._export(ctx, totals)
        except Exception as e:
            logger.exception("Sync run %s failed", run.id)
            await self.db.rollback()
            await self.db.refresh(run)
            run.finish(
                SyncRunStatus.FAILED,
                processed=totals.processed,
                success=totals.success,
                failed=totals.failed,
                conflicted=totals.conflicted,
                error_details=totals.details(error=str(e) or type(e).__name__),
            )
            await self.db.commit()
            raise

        run.finish(
            SyncRunStatus.COMPLETED,
            processed=totals.processed,
            success=totals.success,
            failed=totals.failed,
            conflicted=totals.conflicted,
            error_details=totals.details(),
        )
        await self.db.commit()
        logger.info(
            "Sync run %s completed: processed=%d success=%d failed=%d conflicted=%d",
            run.id, totals.processed, totals.success, totals.failed, totals.conflicted,
        )
        return self._response(run, totals)

    @staticmethod
    def _response(run: SyncRun, totals: _Totals, error: str | None = None) -> SyncResponse:
        return SyncResponse(
            processed=totals.processed,
            success=totals.success,
            failed=totals.failed,
            conflicted=totals.conflicted,
            errors=list(totals.errors),
            status=run.status,
            sync_run_id=run.id,
            error=error,
        )

    # -- per entity type -----------------------------------------------------

    async def _get_progress(
        self, user_id: str, entity_type: EntityType, create: bool = True
    ) -> BatchProgress | None:
        stmt = select(BatchProgress).where(
            BatchProgress.user_id == user_id,
            BatchProgress.entity_type == entity_type.value,
        )
        progress = (await self.db.execute(stmt)).scalar_one_or_none()
        if progress is None and create:
            progress = BatchProgress(
                user_id=user_id,
                entity_type=entity_type.value,
                status=ProgressStatus.PENDING.value,
                total_estimated=0,
                total_imported=0,
                last_imported_page=0,
            )
            self.db.add(progress)
            await self.db.flush()
        return progress

    async def _import_entity(
        self, ctx: SyncContext, entity_type: EntityType, plan: RunPlan, totals: _Totals
    ) -> None:
        progress = await self._get_progress(ctx.user_id, entity_type)
        if plan.reset or not progress.is_resumable:
            progress.reset(plan.page_size)
        start_page = progress.next_page

        # Page numbers only line up with the page size they were fetched with.
        page_size = progress.batch_size if progress.is_resumable else plan.page_size
        if page_size != plan.page_size:
            logger.info(
                "Resuming %s at page %d with its original page size %d",
                entity_type.value, start_page, page_size,
            )

        progress.status = ProgressStatus.ACTIVE.value
        progress.batch_size = page_size
        progress.stop_reason = None
        progress.error_details = None
        await self.db.commit()

        summary: dict[str, Any] = {
            "start_page": start_page,
            "pages": 0,
            "processed": 0,
            "success": 0,
            "failed": 0,
            "conflicted": 0,
            "stop_reason": None,
        }
        totals.entity_types[entity_type.value] = summary

        fetcher = PaginatedFetcher(
            ctx.client,
            entity_type,
            page_size=page_size,
            max_pages=plan.max_pages,
            start_page=start_page,
            delay_seconds=self.config.sync_page_delay_seconds,
            sleep=self._sleep,
        )
        reconciler = RecordReconciler(ctx.db, ctx.user_id, ctx.resolver)

        try:
            async for page in fetcher.pages():
                result = await reconciler.reconcile_page(entity_type, page.records)
                totals.add_page(result)
                _count_page(summary, result)

                progress.last_imported_page = page.number
                progress.total_imported += result.processed - result.failed
                if page.records:
                    last_id = page.records[-1].get("id")
                    progress.last_imported_id = str(last_id) if last_id is not None else None
                if page.total_estimated is not None:
                    progress.total_estimated = page.total_estimated
                else:
                    progress.total_estimated = max(progress.total_estimated, progress.total_imported)
                await self.db.commit()
        except ApiError as e:
            _count_api_error(entity_type, e, summary, totals)
            progress.status = ProgressStatus.FAILED.value
            progress.stop_reason = StopReason.ERROR.value
            progress.error_details = {
                "error": str(e),
                "status_code": e.status_code,
                "page": progress.last_imported_page + 1,
            }
            await self.db.commit()
            return

        stop_reason = fetcher.stop_reason or StopReason.EXHAUSTED
        summary["stop_reason"] = stop_reason.value
        progress.stop_reason = stop_reason.value
        if stop_reason == StopReason.EXHAUSTED:
            progress.status = ProgressStatus.COMPLETED.value
            progress.completed_at = utcnow()
        else:
            progress.status = ProgressStatus.ACTIVE.value
        await self.db.commit()
        logger.info(
            "Imported %s for user %s: %d pages, stop=%s",
            entity_type.value, ctx.user_id, summary["pages"], stop_reason.value,
        )

    async def _import_changes(
        self, ctx: SyncContext, entity_type: EntityType, plan: RunPlan, totals: _Totals
    ) -> None:
        """Import records updated since ``plan.updated_since``.

        Always starts at page 1 and leaves BatchProgress alone: filtered page
        numbers do not line up with the full-import cursor.
        """
        since = as_utc(plan.updated_since).isoformat(timespec="seconds")
        summary: dict[str, Any] = {
            "updated_since": since,
            "pages": 0,
            "processed": 0,
            "success": 0,
            "failed": 0,
            "conflicted": 0,
            "stop_reason": None,
        }
        totals.entity_types[entity_type.value] = summary

        fetcher = PaginatedFetcher(
            ctx.client,
            entity_type,
            page_size=plan.page_size,
            max_pages=plan.max_pages,
            delay_seconds=self.config.sync_page_delay_seconds,
            sleep=self._sleep,
            filters={"updated_since": since},
        )
        reconciler = RecordReconciler(ctx.db, ctx.user_id, ctx.resolver)

        try:
            async for page in fetcher.pages():
                result = await reconciler.reconcile_page(entity_type, page.records)
                totals.add_page(result)
                _count_page(summary, result)
                await self.db.commit()
        except ApiError as e:
            _count_api_error(entity_type, e, summary, totals)
            return

        summary["stop_reason"] = (fetcher.stop_reason or StopReason.EXHAUSTED).value
        logger.info(
            "Imported %s changes since %s for user %s: %d records",
            entity_type.value, since, ctx.user_id, summary["processed"],
        )

    async def _export(self, ctx: SyncContext, totals: _Totals) -> None:
        result = await export_customers(ctx)
        totals.processed += result.processed
        totals.success += result.exported
        totals.failed += result.failed
        totals.errors.extend(result.errors)
        totals.entity_types.setdefault("export", {}).update(
            {"processed": result.processed, "exported": result.exported, "failed": result.failed}
        )


def _count_page(summary: dict[str, Any], result: PageResult) -> None:
    summary["pages"] += 1
    summary["processed"] += result.processed
    summary["success"] += result.success
    summary["failed"] += result.failed
    summary["conflicted"] += result.conflicted


def _count_api_error(entity_type: EntityType, error: ApiError, summary: dict[str, Any], totals: _Totals) -> None:
    message = f"API error importing {entity_type.value}: {error}"
    logger.warning(message)
    totals.errors.append(message)
    # The page that could not be fetched counts as one failed unit.
    totals.failed += 1
    summary["failed"] += 1
    summary["stop_reason"] = StopReason.ERROR.value
    summary["error"] = str(error)
