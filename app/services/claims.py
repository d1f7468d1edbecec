"""
Claim store and channel binding handler.

A claim is a single-use, time-boxed token that lets exactly one external
channel identity (e.g. a Telegram user) bind itself to an agent:

    CREATED --(redeemed within TTL)--> CONSUMED (row deleted)
    CREATED --(TTL passes)-----------> EXPIRED  (ignored, purged later)

Redemption order is binding upsert -> gateway registration -> claim delete.
If the gateway call fails the claim survives so the same token can be
retried before it expires.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import get_settings
from app.db.models import AgentBindingClaimDB, AgentBindingDB
from app.errors import GatewayError, InvalidOrExpiredClaim
from app.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TYPE = "telegram"
# 8 random bytes -> 16 hex chars (64 bits)
_TOKEN_BYTES = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_claim_token() -> str:
    """Unguessable claim token."""
    return secrets.token_hex(_TOKEN_BYTES)


@dataclass
class ClaimTicket:
    """What the owner gets back when requesting a channel link."""
    token: str
    expires_at: datetime
    deep_link: str


@dataclass
class BindingResult:
    """Outcome of a successful claim redemption."""
    binding_id: str
    user_id: str
    agent_id: str
    gateway_agent_id: str
    channel_type: str
    channel_user_id: str


def build_deep_link(token: str) -> str:
    return f"{get_settings().telegram_link_base}?start={token}"


async def create_claim(
    db: AsyncSession,
    agent_id: str,
    now: Optional[datetime] = None,
) -> ClaimTicket:
    """Persist a fresh claim for ``agent_id`` and return its deep link."""
    settings = get_settings()
    now = now or _utcnow()
    token = generate_claim_token()
    expires_at = now + timedelta(seconds=settings.claim_ttl_seconds)

    db.add(AgentBindingClaimDB(
        agent_id=agent_id,
        token=token,
        expires_at=expires_at,
        created_at=now,
    ))
    await db.commit()

    logger.info(f"Created binding claim for agent {agent_id}, expires {expires_at.isoformat()}")
    return ClaimTicket(token=token, expires_at=expires_at, deep_link=build_deep_link(token))


async def _upsert_binding(
    db: AsyncSession,
    user_id: str,
    agent_id: str,
    channel_type: str,
    channel_user_id: str,
) -> AgentBindingDB:
    """Insert the binding unless the same (agent, channel, user) row exists."""
    result = await db.execute(
        select(AgentBindingDB).where(
            AgentBindingDB.agent_id == agent_id,
            AgentBindingDB.channel_type == channel_type,
            AgentBindingDB.channel_user_id == channel_user_id,
        )
    )
    binding = result.scalar_one_or_none()
    if binding:
        return binding

    binding = AgentBindingDB(
        user_id=user_id,
        agent_id=agent_id,
        channel_type=channel_type,
        channel_user_id=channel_user_id,
    )
    db.add(binding)
    await db.flush()
    return binding


async def resolve_claim(
    db: AsyncSession,
    token: str,
    channel_user_id: str,
    gateway: GatewayClient,
    channel_type: str = DEFAULT_CHANNEL_TYPE,
    now: Optional[datetime] = None,
) -> BindingResult:
    """Redeem ``token`` for ``channel_user_id``.

    Raises InvalidOrExpiredClaim for unknown, consumed or expired tokens,
    and re-raises GatewayError (claim kept, binding committed) when the
    gateway registration fails.
    """
    now = now or _utcnow()

    # Row lock serializes concurrent redemptions of the same token
    result = await db.execute(
        select(AgentBindingClaimDB)
        .options(selectinload(AgentBindingClaimDB.agent))
        .where(AgentBindingClaimDB.token == token)
        .with_for_update()
    )
    claim = result.scalar_one_or_none()
    if claim is None or claim.expires_at <= now:
        await db.rollback()
        raise InvalidOrExpiredClaim("Invalid or expired token")

    claim_id = claim.id
    agent = claim.agent
    agent_id = agent.id
    user_id = agent.user_id
    gateway_agent_id = agent.gateway_agent_id

    binding = await _upsert_binding(db, user_id, agent_id, channel_type, channel_user_id)
    binding_id = binding.id

    try:
        await gateway.bind_channel(gateway_agent_id, channel_type, channel_user_id)
    except GatewayError:
        # Keep the binding and the claim; the same token may be retried
        await db.commit()
        logger.warning(
            f"Gateway binding failed for agent {agent_id} ({channel_type}:{channel_user_id}); claim kept for retry"
        )
        raise

    try:
        await db.execute(
            delete(AgentBindingClaimDB).where(AgentBindingClaimDB.id == claim_id)
        )
        await db.commit()
    except SQLAlchemyError as e:
        # Leftover claim is harmless: it expires on its own
        logger.warning(f"Failed to delete consumed claim {claim_id}: {e}")
        await db.rollback()
        binding = await _upsert_binding(db, user_id, agent_id, channel_type, channel_user_id)
        binding_id = binding.id
        await db.commit()

    logger.info(f"Bound {channel_type}:{channel_user_id} to agent {agent_id}")
    return BindingResult(
        binding_id=binding_id,
        user_id=user_id,
        agent_id=agent_id,
        gateway_agent_id=gateway_agent_id,
        channel_type=channel_type,
        channel_user_id=channel_user_id,
    )


async def purge_expired_claims(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Delete expired claims. Returns the number of rows removed."""
    now = now or _utcnow()
    result = await db.execute(
        delete(AgentBindingClaimDB).where(AgentBindingClaimDB.expires_at <= now)
    )
    await db.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info(f"Purged {removed} expired binding claims")
    return removed
