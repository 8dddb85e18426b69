"""Scheduled sync - full import for every connected user, one at a time."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import SyncSettings, settings as default_settings
from ..schemas.sync import SyncRequest
from ..services import connection_svc
from .errors import SyncError
from .fetcher import Sleep
from .sync_engine import SyncOrchestrator

logger = logging.getLogger(__name__)


async def run_auto_sync(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    config: SyncSettings | None = None,
    orchestrator_factory: Callable[[AsyncSession], Any] | None = None,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, Any]:
    """Run a ``full_import`` of everything for each active connection.

    Each user gets a fresh session. A failure for one user is recorded and the
    loop moves on. Returns ``{"synced", "failed", "errors"}``.
    """
    config = config or default_settings
    factory = orchestrator_factory or (lambda db: SyncOrchestrator(db, config=config, sleep=sleep))

    async with session_factory() as db:
        user_ids = [c.user_id for c in await connection_svc.list_active_connections(db)]

    logger.info("Auto sync starting for %d connected users", len(user_ids))
    summary: dict[str, Any] = {"synced": 0, "failed": 0, "errors": []}
    request = SyncRequest(
        action="full_import",
        sync_type="all",
        batch_size=config.auto_sync_batch_size,
        max_pages=config.auto_sync_max_pages,
    )

    for index, user_id in enumerate(user_ids):
        if index and config.auto_sync_user_delay_seconds > 0:
            await sleep(config.auto_sync_user_delay_seconds)

        async with session_factory() as db:
            try:
                response = await factory(db).run(user_id, request)
            except SyncError as e:
                summary["failed"] += 1
                summary["errors"].append(f"{user_id}: {e}")
                logger.warning("Auto sync skipped user %s: %s", user_id, e)
                continue
            except Exception as e:
                summary["failed"] += 1
                summary["errors"].append(f"{user_id}: {e}")
                logger.exception("Auto sync failed for user %s", user_id)
                continue

        if response.status == "completed":
            summary["synced"] += 1
        else:
            summary["failed"] += 1
            summary["errors"].append(f"{user_id}: {response.error}")

    logger.info("Auto sync finished: %d synced, %d failed", summary["synced"], summary["failed"])
    return summary
