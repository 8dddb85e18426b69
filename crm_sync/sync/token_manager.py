"""Token manager - hands out a valid access token for a user's connection.

Tokens are checked lazily at the start of each run. An access token within
``token_refresh_leeway_seconds`` of its expiry is refreshed first; if the
refresh fails the connection is deactivated and the user must reconnect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.base import as_utc, utcnow
from ..models.connection import Connection
from ..oauth.client import OAuthClient, OAuthError
from ..services import connection_svc
from .errors import ConnectionNotFoundError, TokenExpiredError

logger = logging.getLogger(__name__)


class TokenManager:
    """Per-session token manager for CRM connections.

    Usage:
        manager = TokenManager(db)
        connection = await manager.get_active_connection(user_id)
        token = await manager.ensure_valid_token(connection)
    """

    def __init__(
        self,
        db: AsyncSession,
        oauth_client: OAuthClient | None = None,
        leeway_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self._oauth_client = oauth_client
        self.leeway = timedelta(
            seconds=settings.token_refresh_leeway_seconds if leeway_seconds is None else leeway_seconds
        )
        self._clock = clock

    def _get_oauth_client(self) -> OAuthClient:
        if self._oauth_client is None:
            self._oauth_client = OAuthClient.from_settings()
        return self._oauth_client

    async def get_active_connection(self, user_id: str) -> Connection:
        """Load the user's active connection.

        Raises:
            ConnectionNotFoundError: If the user has not connected an account
        """
        connection = await connection_svc.get_active_connection(self.db, user_id)
        if connection is None:
            raise ConnectionNotFoundError(user_id)
        return connection

    def needs_refresh(self, connection: Connection) -> bool:
        expires_at = as_utc(connection.token_expires_at)
        if expires_at is None or not connection.access_token:
            return True
        return self._clock() >= expires_at - self.leeway

    async def ensure_valid_token(self, connection: Connection) -> str:
        """Return a usable access token, refreshing it first if it is (nearly) expired.

        Raises:
            TokenExpiredError: If the refresh grant fails; the connection is deactivated
        """
        if not self.needs_refresh(connection):
            return connection.access_token

        if not connection.refresh_token:
            await self._deactivate(connection, "no refresh token stored")
            raise TokenExpiredError()

        try:
            oauth = self._get_oauth_client()
        except OAuthError as e:
            logger.warning("Cannot refresh token for user %s: %s", connection.user_id, e)
            raise TokenExpiredError(f"CRM token expired and cannot be refreshed: {e}") from e

        try:
            tokens = await oauth.refresh_tokens(connection.refresh_token)
        except OAuthError as e:
            await self._deactivate(connection, str(e))
            raise TokenExpiredError() from e

        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token or connection.refresh_token
        connection.token_expires_at = tokens.expires_at
        await self.db.commit()
        logger.info("Refreshed CRM token for user %s (expires %s)", connection.user_id, tokens.expires_at)
        return tokens.access_token

    async def get_token(self, user_id: str) -> tuple[Connection, str]:
        connection = await self.get_active_connection(user_id)
        return connection, await self.ensure_valid_token(connection)

    async def _deactivate(self, connection: Connection, reason: str) -> None:
        logger.warning("Token refresh failed for user %s: %s; deactivating connection", connection.user_id, reason)
        connection.is_active = False
        await self.db.commit()
