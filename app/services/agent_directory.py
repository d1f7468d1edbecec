"""Agent directory: resolves a dashboard user to their single gateway agent.

The agent is provisioned lazily on first access. ``agents.user_id`` is
unique, so when two first-access requests race, one insert loses with an
IntegrityError and re-reads the winner's row.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import AsyncSessionLocal
from app.db.models import AgentDB
from app.services.gateway_client import GatewayAgent, GatewayClient

logger = logging.getLogger(__name__)

# Placeholder ids used when no gateway is involved (demo/offline mode)
DEMO_PLACEHOLDER_AGENT_ID = "demo-agent"
DEMO_PLACEHOLDER_WORKSPACE_ID = "demo-workspace"


@dataclass
class AgentRecord:
    """A user's agent as seen by the rest of the app."""
    id: str
    user_id: str
    gateway_agent_id: str
    gateway_workspace_id: str

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_agent(self.gateway_agent_id)

    @classmethod
    def from_row(cls, row: AgentDB) -> "AgentRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            gateway_agent_id=row.gateway_agent_id,
            gateway_workspace_id=row.gateway_workspace_id,
        )


def is_placeholder_agent(gateway_agent_id: str) -> bool:
    """True if this agent id is the demo placeholder (no real gateway)."""
    return gateway_agent_id == DEMO_PLACEHOLDER_AGENT_ID


async def _find_agent(db: AsyncSession, user_id: str) -> Optional[AgentDB]:
    result = await db.execute(
        select(AgentDB).where(AgentDB.user_id == user_id).limit(1)
    )
    return result.scalar_one_or_none()


async def _provision(user_id: str, gateway: Optional[GatewayClient]) -> GatewayAgent:
    if gateway is not None:
        return await gateway.create_agent(user_id)
    async with GatewayClient.from_settings() as client:
        return await client.create_agent(user_id)


async def ensure_agent(
    user_id: str,
    skip_gateway: bool = False,
    gateway: Optional[GatewayClient] = None,
) -> AgentRecord:
    """Return the user's agent, creating it on first access.

    When ``skip_gateway`` is true a placeholder agent/workspace pair is
    stored instead of calling the gateway. Gateway failures propagate and
    leave nothing behind.
    """
    async with AsyncSessionLocal() as db:
        existing = await _find_agent(db, user_id)
        if existing:
            return AgentRecord.from_row(existing)

    if skip_gateway:
        remote = GatewayAgent(DEMO_PLACEHOLDER_AGENT_ID, DEMO_PLACEHOLDER_WORKSPACE_ID)
    else:
        remote = await _provision(user_id, gateway)

    async with AsyncSessionLocal() as db:
        row = AgentDB(
            user_id=user_id,
            gateway_agent_id=remote.agent_id,
            gateway_workspace_id=remote.workspace_id,
        )
        db.add(row)
        try:
            await db.commit()
            return AgentRecord.from_row(row)
        except IntegrityError:
            await db.rollback()

    # Lost the race: another request created the agent first
    async with AsyncSessionLocal() as db:
        winner = await _find_agent(db, user_id)
    if winner is None:
        raise RuntimeError(f"Agent for user {user_id} vanished after insert conflict")
    if not skip_gateway and winner.gateway_agent_id != remote.agent_id:
        logger.warning(
            f"Concurrent provisioning for user {user_id}: gateway agent "
            f"{remote.agent_id} is orphaned, keeping {winner.gateway_agent_id}"
        )
    return AgentRecord.from_row(winner)


async def get_owned_agent(
    db: AsyncSession, agent_id: str, user_id: str
) -> Optional[AgentDB]:
    """Return the agent only if ``user_id`` owns it."""
    result = await db.execute(
        select(AgentDB).where(AgentDB.id == agent_id, AgentDB.user_id == user_id)
    )
    return result.scalar_one_or_none()
