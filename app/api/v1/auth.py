"""Authentication API endpoints."""

import time
import threading
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.database import get_db
from app.db.models import UserDB
from app.api.deps import get_current_user
from app.services.auth_service import (
    authenticate_user,
    create_access_token,
    get_or_create_demo_user,
)

router = APIRouter(prefix="/auth", tags=["auth"])

# ---------- Rate limiting ----------

_LOGIN_ATTEMPTS: dict[str, list[float]] = defaultdict(list)
_LOGIN_LOCK = threading.Lock()
_MAX_ATTEMPTS = 5  # max attempts per window
_WINDOW_SECONDS = 300  # 5 minute window


def _check_rate_limit(key: str) -> bool:
    """Return True if the request is allowed, False if rate-limited."""
    now = time.time()
    with _LOGIN_LOCK:
        attempts = [t for t in _LOGIN_ATTEMPTS[key] if now - t < _WINDOW_SECONDS]
        _LOGIN_ATTEMPTS[key] = attempts
        return len(attempts) < _MAX_ATTEMPTS


def _record_failed_attempt(key: str) -> None:
    """Record a failed login attempt for rate limiting."""
    with _LOGIN_LOCK:
        _LOGIN_ATTEMPTS[key].append(time.time())


# ---------- Schemas ----------

class LoginRequest(BaseModel):
    username: str
    password: str


class UserInfo(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    is_demo: bool
    created_at: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo


def _user_info(user: UserDB) -> UserInfo:
    return UserInfo(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        is_demo=bool(user.is_demo),
        created_at=user.created_at.isoformat() if user.created_at else None,
    )


def _login_response(user: UserDB) -> LoginResponse:
    settings = get_settings()
    access_token = create_access_token(
        user.id, user.username,
        settings.effective_jwt_secret,
        settings.jwt_access_token_expire_hours,
    )
    return LoginResponse(access_token=access_token, user=_user_info(user))


# ---------- Public endpoints ----------

@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """Authenticate with username and password."""
    client_ip = request.client.host if request.client else "unknown"
    if not _check_rate_limit(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )

    user = await authenticate_user(db, body.username, body.password)
    if not user or not user.is_active:
        _record_failed_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return _login_response(user)


@router.post("/demo", response_model=LoginResponse)
async def demo_login(db: AsyncSession = Depends(get_db)):
    """Sign in as the shared demo user (only when ALLOW_DEMO=true)."""
    if not get_settings().allow_demo:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Demo login is disabled",
        )
    user = await get_or_create_demo_user(db)
    return _login_response(user)


# ---------- Protected endpoints ----------

@router.get("/me", response_model=UserInfo)
async def get_me(user: UserDB = Depends(get_current_user)):
    """Get current user info."""
    return _user_info(user)
