"""Sync models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin, OwnerMixin, ExternalSyncMixin
from .connection import Connection
from .field_mapping import FieldMapping, MappingDirection
from .sync_run import SyncRun, SyncRunStatus
from .batch_progress import BatchProgress, ProgressStatus, StopReason
from .conflict import Conflict, ConflictResolution
from .customer import Customer
from .deal import Deal
from .invoice import Invoice
from .quote import Quote
from .project import Project

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "OwnerMixin",
    "ExternalSyncMixin",
    "Connection",
    "FieldMapping",
    "MappingDirection",
    "SyncRun",
    "SyncRunStatus",
    "BatchProgress",
    "ProgressStatus",
    "StopReason",
    "Conflict",
    "ConflictResolution",
    "Customer",
    "Deal",
    "Invoice",
    "Quote",
    "Project",
]
