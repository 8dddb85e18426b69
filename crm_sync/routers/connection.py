"""Connection API - OAuth code exchange and connection status."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..deps import get_current_user, get_oauth_client
from ..oauth.client import OAuthClient, OAuthError
from ..schemas.sync import ConnectionStatus, TokenExchangeRequest
from ..services import connection_svc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["connection"])


@router.get("/oauth/authorize")
async def authorize_url(
    user_id: str = Depends(get_current_user),
    oauth: OAuthClient = Depends(get_oauth_client),
):
    state = oauth.generate_state(user_id)
    return {"url": oauth.get_authorization_url(state=state), "state": state}


@router.post("/oauth/token", response_model=ConnectionStatus)
async def exchange_token(
    payload: TokenExchangeRequest,
    user_id: str = Depends(get_current_user),
    oauth: OAuthClient = Depends(get_oauth_client),
    db: AsyncSession = Depends(get_db),
):
    if not oauth.verify_state(payload.state, user_id, settings.oauth_state_ttl_seconds):
        logger.warning("Rejected OAuth code exchange for user %s: bad state", user_id)
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    try:
        tokens = await oauth.exchange_code(payload.code)
    except OAuthError as e:
        logger.warning("OAuth code exchange failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=400, detail=str(e)) from e

    await connection_svc.store_tokens(db, user_id, tokens)
    return await connection_svc.get_status(db, user_id)


@router.get("/connection", response_model=ConnectionStatus)
async def connection_status(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await connection_svc.get_status(db, user_id)


@router.delete("/connection")
async def disconnect(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    disconnected = await connection_svc.disconnect(db, user_id)
    return {"disconnected": disconnected}
