"""
HTTP client for the remote agent gateway.

Management calls only: provisioning an agent/workspace for a user and
registering channel bindings. Every request carries the process-wide
bearer token. Nothing here retries; callers decide.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.config import get_settings
from app.errors import (
    ConfigurationError,
    GatewayBindingFailed,
    GatewayProtocolError,
    GatewayUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful personal assistant for this user."

# Cap on response text copied into error messages
_MAX_ERROR_EXCERPT = 200


@dataclass(frozen=True)
class GatewayAgent:
    """Identifiers of an agent provisioned on the gateway."""
    agent_id: str
    workspace_id: str


def _first_present(data: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def parse_gateway_agent(data: Any) -> GatewayAgent:
    """Normalize a create-agent response.

    The gateway has been seen answering with either camelCase
    (``agentId``/``workspaceId``) or ``id``/``workspace_id``.
    """
    if not isinstance(data, dict):
        raise GatewayProtocolError("Gateway response is not a JSON object")
    agent_id = _first_present(data, "agentId", "id")
    workspace_id = _first_present(data, "workspaceId", "workspace_id")
    if not agent_id or not workspace_id:
        raise GatewayProtocolError("Gateway response missing agentId or workspaceId")
    return GatewayAgent(agent_id=agent_id, workspace_id=workspace_id)


def _excerpt(response: httpx.Response) -> str:
    try:
        text = response.text
    except Exception:
        return ""
    return text[:_MAX_ERROR_EXCERPT]


class GatewayClient:
    """Thin wrapper around httpx for gateway management requests."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        # Checked on first request, so callers can reject bad input first
        self._config_error: Optional[str] = None
        if not base_url:
            self._config_error = "GATEWAY_URL is not set"
        elif not token:
            self._config_error = "GATEWAY_TOKEN is not set"
        self.base_url = (base_url or "").rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "GatewayClient":
        settings = get_settings()
        return cls(settings.gateway_url, settings.gateway_token, settings.gateway_timeout)

    @property
    def configured(self) -> bool:
        return self._config_error is None

    async def _post(self, path: str, body: dict) -> httpx.Response:
        if self._config_error:
            raise ConfigurationError(self._config_error)
        try:
            return await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Gateway request POST {path} failed: {e}")
            raise GatewayUnavailable(f"Gateway request failed: {e}") from e

    async def create_agent(self, user_id: str) -> GatewayAgent:
        """Create a dedicated agent/workspace for a user on the gateway."""
        response = await self._post(
            "/agents",
            {
                "name": f"User {user_id} agent",
                "systemPrompt": DEFAULT_SYSTEM_PROMPT,
            },
        )
        if not response.is_success:
            raise GatewayUnavailable(
                f"Gateway createAgent failed: {response.status_code} {_excerpt(response)}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayProtocolError("Gateway createAgent returned invalid JSON") from e

        agent = parse_gateway_agent(data)
        logger.info(f"Provisioned gateway agent {agent.agent_id} for user {user_id}")
        return agent

    async def bind_channel(
        self, agent_id: str, channel_type: str, channel_user_id: str
    ) -> None:
        """Associate an external channel identity with a gateway agent."""
        response = await self._post(
            f"/agents/{agent_id}/bindings",
            {"channel": channel_type, "channelUserId": channel_user_id},
        )
        if not response.is_success:
            raise GatewayBindingFailed(
                f"Gateway bind {channel_type} failed: {response.status_code} {_excerpt(response)}",
                status_code=response.status_code,
            )
        logger.info(f"Gateway bound {channel_type}:{channel_user_id} to agent {agent_id}")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GatewayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
