"""Fetching chat credentials from the dashboard's token endpoint."""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from app.errors import CredentialUnavailable

logger = logging.getLogger(__name__)

TOKEN_PATH = "/api/v1/chat/token"


@dataclass(frozen=True)
class ChatCredential:
    token: str
    agent_id: str


class CredentialSource(Protocol):
    async def fetch(self) -> ChatCredential:
        ...


class TokenEndpointCredentials:
    """Asks ``GET /api/v1/chat/token`` for a fresh credential on every call.

    The endpoint derives the agent from the caller's own login, so the
    session never chooses which agent it is authorized for.
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def fetch(self) -> ChatCredential:
        try:
            response = await self._client.get(TOKEN_PATH)
        except httpx.HTTPError as e:
            raise CredentialUnavailable(f"Failed to get chat token: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            detail = data.get("detail") if isinstance(data, dict) else None
            raise CredentialUnavailable(detail or "Failed to get chat token")

        token = data.get("token") if isinstance(data, dict) else None
        agent_id = data.get("agentId") if isinstance(data, dict) else None
        if not token or not agent_id:
            raise CredentialUnavailable("Chat token response missing token or agentId")
        return ChatCredential(token=token, agent_id=agent_id)

    async def close(self) -> None:
        await self._client.aclose()
