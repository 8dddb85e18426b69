"""Sync API schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from ..sync.entities import EntityType

SyncAction = Literal["sync", "import", "full_import", "smart_sync", "export"]


class SyncRequest(BaseModel):
    action: SyncAction = "sync"
    sync_type: str = Field("all", alias="syncType")
    full_sync: bool = Field(False, alias="fullSync")
    batch_size: int | None = Field(None, alias="batchSize", ge=1)
    max_pages: int | None = Field(None, alias="maxPages", ge=1)

    model_config = {"populate_by_name": True}

    @field_validator("sync_type")
    @classmethod
    def _known_scope(cls, value: str) -> str:
        if value != "all" and value not in {t.value for t in EntityType}:
            raise ValueError(f"syncType must be 'all' or one of: {', '.join(t.value for t in EntityType)}")
        return value


class SyncResponse(BaseModel):
    processed: int = 0
    success: int = 0
    failed: int = 0
    conflicted: int = 0
    errors: list[str] = []
    status: str = "completed"
    sync_run_id: uuid.UUID | None = Field(None, alias="syncRunId")
    error: str | None = None

    model_config = {"populate_by_name": True}


class SyncRunResponse(BaseModel):
    id: uuid.UUID
    sync_type: str
    scope: str
    status: str
    records_processed: int
    records_success: int
    records_failed: int
    records_conflicted: int
    error_details: dict | None = None
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class BatchProgressResponse(BaseModel):
    entity_type: str
    total_estimated: int
    total_imported: int
    last_imported_page: int
    last_imported_id: str | None = None
    batch_size: int
    status: str
    stop_reason: str | None = None
    error_details: dict | None = None
    started_at: datetime
    last_updated_at: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class ConflictResponse(BaseModel):
    id: uuid.UUID
    record_type: str
    record_id: uuid.UUID
    external_id: str | None = None
    field: str
    local_value: str | None = None
    external_value: str | None = None
    resolution: str
    created_at: datetime
    resolved_at: datetime | None = None

    model_config = {"from_attributes": True}


class ConflictResolveRequest(BaseModel):
    resolution: Literal["use_local", "use_external"]


class FieldMappingUpdate(BaseModel):
    entity_type: str
    local_field: str
    external_field: str
    direction: Literal["from_external", "to_external", "bidirectional"] = "from_external"
    is_enabled: bool = True


class FieldMappingResponse(FieldMappingUpdate):
    id: uuid.UUID

    model_config = {"from_attributes": True}


class TokenExchangeRequest(BaseModel):
    code: str
    state: str


class ConnectionStatus(BaseModel):
    connected: bool
    expires_at: str | None = None
    is_expired: bool | None = None
