"""
Test data factories for creating database objects.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional

from app.config import get_settings
from app.db.models import (
    UserDB,
    AgentDB,
    AgentBindingClaimDB,
    AgentBindingDB,
)
from app.services.auth_service import create_access_token, hash_password


def make_user(
    username: str = "alice",
    password: Optional[str] = "alice123",
    is_demo: bool = False,
    is_active: bool = True,
    **kwargs,
) -> UserDB:
    return UserDB(
        id=kwargs.get("id", str(uuid.uuid4())),
        username=username,
        password_hash=hash_password(password) if password else None,
        display_name=kwargs.get("display_name", username.title()),
        is_demo=is_demo,
        is_active=is_active,
        created_at=kwargs.get("created_at", datetime.utcnow()),
        updated_at=kwargs.get("updated_at", datetime.utcnow()),
    )


def make_agent(
    user_id: str,
    gateway_agent_id: str = "gw-agent-1",
    gateway_workspace_id: str = "gw-ws-1",
    **kwargs,
) -> AgentDB:
    return AgentDB(
        id=kwargs.get("id", str(uuid.uuid4())),
        user_id=user_id,
        gateway_agent_id=gateway_agent_id,
        gateway_workspace_id=gateway_workspace_id,
        created_at=kwargs.get("created_at", datetime.utcnow()),
        updated_at=kwargs.get("updated_at", datetime.utcnow()),
    )


def make_claim(
    agent_id: str,
    token: Optional[str] = None,
    ttl_seconds: int = 600,
    **kwargs,
) -> AgentBindingClaimDB:
    created_at = kwargs.get("created_at", datetime.utcnow())
    return AgentBindingClaimDB(
        id=kwargs.get("id", str(uuid.uuid4())),
        agent_id=agent_id,
        token=token or uuid.uuid4().hex[:16],
        expires_at=kwargs.get("expires_at", created_at + timedelta(seconds=ttl_seconds)),
        created_at=created_at,
    )


def make_binding(
    user_id: str,
    agent_id: str,
    channel_type: str = "telegram",
    channel_user_id: str = "424242",
    **kwargs,
) -> AgentBindingDB:
    return AgentBindingDB(
        id=kwargs.get("id", str(uuid.uuid4())),
        user_id=user_id,
        agent_id=agent_id,
        channel_type=channel_type,
        channel_user_id=channel_user_id,
        created_at=kwargs.get("created_at", datetime.utcnow()),
        updated_at=kwargs.get("updated_at", datetime.utcnow()),
    )


def auth_header(user: UserDB) -> dict:
    """Bearer header for a persisted user."""
    token = create_access_token(user.id, user.username, get_settings().effective_jwt_secret)
    return {"Authorization": f"Bearer {token}"}
