"""Authentication service: password hashing, dashboard access tokens, user queries."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import UserDB

DEMO_USERNAME = "demo"


# ---------- Password ----------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a password against a bcrypt hash. Accounts without a hash never match."""
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


# ---------- JWT ----------

def create_access_token(
    user_id: str,
    username: str,
    secret: str,
    expire_hours: int = 24,
) -> str:
    """Create a JWT access token for the dashboard API."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "username": username,
        "type": "access",
        "exp": now + timedelta(hours=expire_hours),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def decode_token(token: str, secret: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, secret, algorithms=["HS256"])


# ---------- User queries ----------

async def get_user_by_username(db: AsyncSession, username: str) -> Optional[UserDB]:
    """Look up a user by username."""
    result = await db.execute(select(UserDB).where(UserDB.username == username))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[UserDB]:
    """Look up a user by ID."""
    result = await db.execute(select(UserDB).where(UserDB.id == user_id))
    return result.scalar_one_or_none()


async def authenticate_user(
    db: AsyncSession, username: str, password: str
) -> Optional[UserDB]:
    """Authenticate a user by username and password. Returns user or None."""
    user = await get_user_by_username(db, username)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


async def get_or_create_demo_user(db: AsyncSession) -> UserDB:
    """Return the shared demo account, creating it on first use."""
    user = await get_user_by_username(db, DEMO_USERNAME)
    if user:
        return user
    user = UserDB(
        username=DEMO_USERNAME,
        password_hash=None,
        display_name="Demo User",
        is_demo=True,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user
