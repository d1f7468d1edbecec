"""
SQLAlchemy ORM models for the agent dashboard.

Tables:
- users: Dashboard accounts
- agents: One remote gateway agent per user
- agent_binding_claims: Single-use, time-boxed channel link tokens
- agent_bindings: Durable links between an agent and an external channel identity
"""

import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.database import Base


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


class UserDB(Base):
    """
    User accounts for authentication.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    username: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(256), nullable=True
    )  # NULL for demo accounts
    display_name: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )
    is_demo: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(username={self.username}, demo={self.is_demo})>"


class AgentDB(Base):
    """
    The remote gateway agent provisioned for a user.

    Exactly one row per user; the unique constraint on user_id is what
    settles concurrent first-access provisioning.
    """
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True
    )
    gateway_agent_id: Mapped[str] = mapped_column(
        String(128), nullable=False
    )
    gateway_workspace_id: Mapped[str] = mapped_column(
        String(128), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    claims: Mapped[List["AgentBindingClaimDB"]] = relationship(
        "AgentBindingClaimDB", back_populates="agent", cascade="all, delete-orphan"
    )
    bindings: Mapped[List["AgentBindingDB"]] = relationship(
        "AgentBindingDB", back_populates="agent", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Agent(user_id={self.user_id}, gateway_agent_id={self.gateway_agent_id})>"


class AgentBindingClaimDB(Base):
    """
    Single-use token that authorizes one channel binding for an agent.

    Consumed by deletion; expired rows are ignored and purged later.
    """
    __tablename__ = "agent_binding_claims"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    # Relationships
    agent: Mapped["AgentDB"] = relationship(
        "AgentDB", back_populates="claims"
    )

    __table_args__ = (
        Index("ix_agent_binding_claims_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<AgentBindingClaim(agent_id={self.agent_id}, expires_at={self.expires_at})>"


class AgentBindingDB(Base):
    """
    Bindings connect an external messaging identity to an agent.
    """
    __tablename__ = "agent_bindings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String(36), nullable=False
    )
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    channel_type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # telegram
    channel_user_id: Mapped[str] = mapped_column(
        String(256), nullable=False
    )  # Platform-side user ID
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    agent: Mapped["AgentDB"] = relationship(
        "AgentDB", back_populates="bindings"
    )

    __table_args__ = (
        UniqueConstraint(
            "agent_id", "channel_type", "channel_user_id", name="uq_agent_binding"
        ),
        Index("ix_agent_bindings_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<AgentBinding(type={self.channel_type}, channel_user_id={self.channel_user_id})>"
