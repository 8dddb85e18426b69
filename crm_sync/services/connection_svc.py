"""Connection service - storing, reading and revoking a user's CRM tokens."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import as_utc, utcnow
from ..models.connection import Connection
from ..oauth.client import OAuthTokens

logger = logging.getLogger(__name__)


async def get_active_connection(db: AsyncSession, user_id: str) -> Connection | None:
    stmt = select(Connection).where(
        Connection.user_id == user_id,
        Connection.is_active.is_(True),
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_active_connections(db: AsyncSession) -> list[Connection]:
    stmt = select(Connection).where(Connection.is_active.is_(True)).order_by(Connection.created_at)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def store_tokens(db: AsyncSession, user_id: str, tokens: OAuthTokens) -> Connection:
    """Replace the user's active connection with a fresh token pair."""
    await db.execute(
        update(Connection)
        .where(Connection.user_id == user_id, Connection.is_active.is_(True))
        .values(is_active=False)
    )
    await db.flush()

    connection = Connection(
        user_id=user_id,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_expires_at=tokens.expires_at,
        is_active=True,
    )
    db.add(connection)
    await db.commit()
    await db.refresh(connection)
    logger.info("Stored CRM connection for user %s (expires %s)", user_id, tokens.expires_at)
    return connection


async def disconnect(db: AsyncSession, user_id: str) -> bool:
    connection = await get_active_connection(db, user_id)
    if connection is None:
        return False
    connection.is_active = False
    await db.commit()
    logger.info("Disconnected CRM connection for user %s", user_id)
    return True


async def get_status(db: AsyncSession, user_id: str) -> dict:
    connection = await get_active_connection(db, user_id)
    if connection is None:
        return {"connected": False, "expires_at": None, "is_expired": None}

    expires_at = as_utc(connection.token_expires_at)
    return {
        "connected": True,
        "expires_at": expires_at.isoformat() if expires_at else None,
        "is_expired": expires_at is None or utcnow() >= expires_at,
    }
