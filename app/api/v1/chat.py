"""Chat token endpoint.

The browser (or any GatewaySession client) calls this before every
WebSocket connection attempt to get a short-lived credential for the
caller's own agent.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.deps import get_current_user
from app.db.models import UserDB
from app.errors import GatewayError
from app.services.agent_directory import ensure_agent
from app.services.chat_token import issue_chat_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatTokenResponse(BaseModel):
    token: str
    agent_id: str = Field(..., serialization_alias="agentId")


@router.get("/token", response_model=ChatTokenResponse, response_model_by_alias=True)
async def get_chat_token(user: UserDB = Depends(get_current_user)):
    """Issue a one-hour chat token bound to the caller's gateway agent."""
    try:
        agent = await ensure_agent(user.id, skip_gateway=bool(user.is_demo))
    except GatewayError as e:
        logger.error(f"Agent provisioning failed for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to provision agent",
        )

    token = issue_chat_token(agent.gateway_agent_id)
    return ChatTokenResponse(token=token, agent_id=agent.gateway_agent_id)
