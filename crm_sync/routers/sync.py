"""Sync API - trigger runs and inspect history, progress, conflicts and mappings."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..deps import get_current_user, get_orchestrator
from ..models.batch_progress import BatchProgress
from ..models.sync_run import SyncRun
from ..schemas.sync import (
    BatchProgressResponse,
    ConflictResolveRequest,
    ConflictResponse,
    FieldMappingResponse,
    FieldMappingUpdate,
    SyncRequest,
    SyncResponse,
    SyncRunResponse,
)
from ..services import mapping_svc
from ..sync.conflicts import ConflictStore
from ..sync.entities import EntityType
from ..sync.errors import (
    ConflictAlreadyResolvedError,
    ConflictNotFoundError,
    SyncAlreadyRunningError,
)
from ..sync.sync_engine import SyncOrchestrator

router = APIRouter(prefix="/api", tags=["sync"])


def _finished(response: SyncResponse) -> SyncResponse:
    # A run returned as failed could not get a token; the user has to reconnect.
    if response.status == "failed":
        raise HTTPException(status_code=401, detail=response.model_dump(by_alias=True, mode="json"))
    return response


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(
    payload: SyncRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        response = await orchestrator.run(user_id, payload)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _finished(response)


@router.post("/sync/resume/{entity_type}", response_model=SyncResponse)
async def resume_sync(
    entity_type: EntityType,
    user_id: str = Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        response = await orchestrator.resume(user_id, entity_type)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return _finished(response)


@router.get("/sync/runs", response_model=list[SyncRunResponse])
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(SyncRun)
        .where(SyncRun.user_id == user_id)
        .order_by(SyncRun.started_at.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


@router.get("/sync/progress", response_model=list[BatchProgressResponse])
async def list_progress(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(BatchProgress).where(BatchProgress.user_id == user_id)
    rows = list((await db.execute(stmt)).scalars().all())
    order = {t.value: i for i, t in enumerate(EntityType)}
    return sorted(rows, key=lambda p: order.get(p.entity_type, len(order)))


@router.get("/conflicts", response_model=list[ConflictResponse])
async def list_conflicts(
    resolution: str | None = Query(None, pattern="^(pending|use_local|use_external)$"),
    record_type: EntityType | None = None,
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    store = ConflictStore(db, user_id)
    return await store.list_conflicts(
        resolution=resolution,
        record_type=record_type.value if record_type else None,
        limit=limit,
    )


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
async def resolve_conflict(
    conflict_id: uuid.UUID,
    payload: ConflictResolveRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    store = ConflictStore(db, user_id)
    try:
        return await store.resolve(conflict_id, payload.resolution)
    except ConflictNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ConflictAlreadyResolvedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("/field-mappings", response_model=list[FieldMappingResponse])
async def list_field_mappings(
    entity_type: EntityType | None = None,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await mapping_svc.ensure_defaults(db, user_id)
    return await mapping_svc.list_mappings(
        db, user_id, entity_type=entity_type.value if entity_type else None
    )


@router.put("/field-mappings", response_model=FieldMappingResponse)
async def update_field_mapping(
    payload: FieldMappingUpdate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await mapping_svc.ensure_defaults(db, user_id)
    try:
        return await mapping_svc.set_mapping(
            db,
            user_id,
            entity_type=payload.entity_type,
            local_field=payload.local_field,
            external_field=payload.external_field,
            direction=payload.direction,
            is_enabled=payload.is_enabled,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
