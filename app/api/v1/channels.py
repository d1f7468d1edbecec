"""
Channel API endpoints.

Provides endpoints for:
- Redeeming a binding claim from an external bot service (webhook)
- Listing the caller's agent bindings
"""

import logging
import secrets
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_gateway_client
from app.config import get_settings
from app.db.database import get_db
from app.db.models import AgentBindingDB, UserDB
from app.errors import GatewayError, InvalidOrExpiredClaim
from app.services.claims import DEFAULT_CHANNEL_TYPE, resolve_claim
from app.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["channels"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class WebhookBody(BaseModel):
    """Claim redemption posted by the bot service."""
    token: Optional[str] = None
    channel_user_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("channelUserId", "telegramUserId", "channel_user_id"),
    )

    @field_validator("channel_user_id", mode="before")
    @classmethod
    def _stringify_numeric_id(cls, value):
        # Telegram user ids arrive as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class AgentBindingResponse(BaseModel):
    """Response model for an agent binding."""
    id: str
    agent_id: str
    channel_type: str
    channel_user_id: str
    created_at: datetime


class AgentBindingListResponse(BaseModel):
    """Response for listing agent bindings."""
    bindings: List[AgentBindingResponse]
    total: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check_webhook_secret(provided: Optional[str]) -> None:
    """Reject callers without the shared secret, when one is configured."""
    expected = get_settings().webhook_secret
    if not expected:
        return
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


async def _parse_webhook_body(request: Request) -> WebhookBody:
    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    try:
        body = WebhookBody.model_validate(raw)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing token or channelUserId",
        )
    if not body.token or not body.channel_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing token or channelUserId",
        )
    return body


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/webhook")
async def channel_webhook(
    request: Request,
    x_webhook_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Redeem a claim token for an external channel user.

    Called by the bot service when a user opens the deep link. A gateway
    failure keeps the claim so the bot can retry with the same token.
    """
    _check_webhook_secret(x_webhook_secret)
    body = await _parse_webhook_body(request)

    try:
        await resolve_claim(
            db, body.token, body.channel_user_id, gateway,
            channel_type=DEFAULT_CHANNEL_TYPE,
        )
    except InvalidOrExpiredClaim:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired token",
        )
    except GatewayError as e:
        logger.error(f"Gateway binding failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to bind channel on gateway",
        )

    return {"ok": True}


@router.get("/bindings", response_model=AgentBindingListResponse)
async def list_bindings(
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List channel bindings of the caller's agent."""
    result = await db.execute(
        select(AgentBindingDB)
        .where(AgentBindingDB.user_id == user.id)
        .order_by(AgentBindingDB.created_at)
    )
    bindings = result.scalars().all()
    return AgentBindingListResponse(
        bindings=[
            AgentBindingResponse(
                id=b.id,
                agent_id=b.agent_id,
                channel_type=b.channel_type,
                channel_user_id=b.channel_user_id,
                created_at=b.created_at,
            )
            for b in bindings
        ],
        total=len(bindings),
    )
