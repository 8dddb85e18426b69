"""FastAPI dependencies for caller identification."""

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .database import get_db
from .oauth.client import OAuthClient, OAuthError
from .sync.sync_engine import SyncOrchestrator


def _extract_token(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.headers.get("x-api-key", "").strip()


async def get_current_user(request: Request) -> str:
    """Resolve the bearer token to a user id. Raises 401 if unknown."""
    provided = _extract_token(request)
    if not provided:
        raise HTTPException(status_code=401, detail="Authorization required")

    for token, user_id in settings.api_tokens_map.items():
        if hmac.compare_digest(provided, token):
            return user_id
    raise HTTPException(status_code=401, detail="Invalid token")


def get_oauth_client() -> OAuthClient:
    try:
        return OAuthClient.from_settings()
    except OAuthError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def get_orchestrator(db: AsyncSession = Depends(get_db)) -> SyncOrchestrator:
    return SyncOrchestrator(db)
