"""
Agent API endpoints.

Provides endpoints for:
- Resolving (and lazily provisioning) the caller's agent
- Creating a Telegram binding claim for an owned agent
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.db.database import get_db
from app.db.models import UserDB
from app.errors import GatewayError
from app.services.agent_directory import ensure_agent, get_owned_agent
from app.services.claims import create_claim

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["agents"])


class AgentResponse(BaseModel):
    """The caller's agent."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    gateway_agent_id: str = Field(..., serialization_alias="gatewayAgentId")
    gateway_workspace_id: str = Field(..., serialization_alias="gatewayWorkspaceId")
    is_placeholder: bool = Field(..., serialization_alias="isPlaceholder")


class ClaimResponse(BaseModel):
    """Deep link the owner opens in Telegram."""
    deep_link: str = Field(..., serialization_alias="deepLink")
    expires_at: datetime = Field(..., serialization_alias="expiresAt")


@router.get("/me", response_model=AgentResponse, response_model_by_alias=True)
async def get_my_agent(user: UserDB = Depends(get_current_user)):
    """Return the caller's agent, provisioning it on first access.

    Demo users get a placeholder agent so the dashboard works without a
    live gateway.
    """
    try:
        agent = await ensure_agent(user.id, skip_gateway=bool(user.is_demo))
    except GatewayError as e:
        logger.error(f"Agent provisioning failed for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to provision agent",
        )
    return AgentResponse(
        id=agent.id,
        gateway_agent_id=agent.gateway_agent_id,
        gateway_workspace_id=agent.gateway_workspace_id,
        is_placeholder=agent.is_placeholder,
    )


@router.post("/{agent_id}/claim", response_model=ClaimResponse, response_model_by_alias=True)
async def create_binding_claim(
    agent_id: str,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a 10-minute Telegram binding claim for an agent the caller owns."""
    agent = await get_owned_agent(db, agent_id, user.id)
    if not agent:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Agent not found or access denied",
        )

    try:
        ticket = await create_claim(db, agent.id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to persist claim for agent {agent.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create claim",
        )

    return ClaimResponse(deep_link=ticket.deep_link, expires_at=ticket.expires_at)
