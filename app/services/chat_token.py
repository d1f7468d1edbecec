"""Short-lived chat tokens for the gateway WebSocket identify handshake.

A chat token is an HS256 JWT carrying ``agentId``. It is stateless: the
gateway verifies signature and expiry only, so a token cannot be revoked
before it expires.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from app.config import get_settings
from app.errors import ConfigurationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600
# Tolerated clock skew when checking exp/iat
LEEWAY_SECONDS = 30


def create_chat_token(
    agent_id: str,
    secret: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[datetime] = None,
) -> str:
    """Sign a chat token for ``agent_id`` valid for ``ttl_seconds``."""
    if not secret:
        raise ConfigurationError("CHAT_TOKEN_SECRET is not set")
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "agentId": agent_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_chat_token(token: str, secret: str) -> Optional[str]:
    """Return the agent id bound to ``token``, or None if it is not valid.

    Bad signatures, expired tokens and malformed input all yield None so
    callers cannot tell them apart.
    """
    if not secret or not token:
        return None
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            leeway=LEEWAY_SECONDS,
            options={"require": ["exp", "iat"]},
        )
    except jwt.PyJWTError:
        return None
    agent_id = payload.get("agentId")
    if not isinstance(agent_id, str) or not agent_id:
        return None
    return agent_id


def issue_chat_token(agent_id: str) -> str:
    """Sign a chat token with the process-wide secret and TTL."""
    settings = get_settings()
    token = create_chat_token(
        agent_id,
        settings.chat_token_secret,
        settings.chat_token_ttl_seconds,
    )
    logger.debug(f"Issued chat token for agent {agent_id}")
    return token


def verify_issued_chat_token(token: str) -> Optional[str]:
    """Verify a chat token against the process-wide secret."""
    return verify_chat_token(token, get_settings().chat_token_secret)
