"""Sync error hierarchy.

The scope of each error decides how far a failure propagates:

- TokenError aborts the whole run (reported as the run's top-level error).
- ApiError (see crm_sync.api.client) aborts the current entity type only.
- StoreError fails one page; MappingError fails one record.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync failures."""


class TokenError(SyncError):
    """No usable access token for the external CRM."""


class ConnectionNotFoundError(TokenError):
    def __init__(self, user_id: str):
        super().__init__("No active CRM connection found. Please connect your account first.")
        self.user_id = user_id


class TokenExpiredError(TokenError):
    def __init__(self, message: str = "CRM token expired and refresh failed. Please reconnect your account."):
        super().__init__(message)


class MappingError(SyncError):
    """A single external record cannot be mapped to a valid local shape."""

    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


class StoreError(SyncError):
    """A page-level write to the local datastore failed."""


class SyncAlreadyRunningError(SyncError):
    def __init__(self, user_id: str, run_id: object = None):
        super().__init__("A sync is already running for this account.")
        self.user_id = user_id
        self.run_id = run_id


class ConflictNotFoundError(SyncError):
    pass


class ConflictAlreadyResolvedError(SyncError):
    def __init__(self, conflict_id: object, resolution: str):
        super().__init__(f"Conflict {conflict_id} is already resolved ({resolution})")
        self.conflict_id = conflict_id
        self.resolution = resolution
