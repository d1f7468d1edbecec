"""FastAPI dependencies for authentication and the gateway client."""

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.database import get_db
from app.db.models import UserDB
from app.errors import ConfigurationError
from app.services.auth_service import decode_token, get_user_by_id
from app.services.gateway_client import GatewayClient

security = HTTPBearer(auto_error=False)

# Fixed identity used when auth is disabled (local development)
LOCAL_USER_ID = "00000000-0000-0000-0000-000000000000"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> UserDB:
    """Validate JWT and return the current user.

    When auth is disabled, returns a synthetic local user.
    """
    settings = get_settings()

    if not settings.auth_enabled:
        user = UserDB()
        user.id = LOCAL_USER_ID
        user.username = "local"
        user.display_name = "Local"
        user.is_demo = False
        user.is_active = True
        return user

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        payload = decode_token(credentials.credentials, settings.effective_jwt_secret)
    except ConfigurationError:
        raise
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user = await get_user_by_id(db, payload["sub"])
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


async def get_gateway_client() -> AsyncGenerator[GatewayClient, None]:
    """Per-request gateway client built from settings.

    Missing gateway settings surface on the first request, not here.
    """
    client = GatewayClient.from_settings()
    try:
        yield client
    finally:
        await client.close()
