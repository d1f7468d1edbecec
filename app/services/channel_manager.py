"""
Channel Manager service.

Manages channel adapter lifecycle and redeems binding claims that arrive
through a channel (Telegram ``/start <token>``) in-process, using the same
path as the HTTP webhook.
"""

import logging
from typing import Callable, Optional

from app.channels.base import ChannelAdapter, InboundMessage, OutboundMessage
from app.db.database import AsyncSessionLocal
from app.errors import ConfigurationError, GatewayError, InvalidOrExpiredClaim
from app.services.claims import resolve_claim
from app.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

LINKED_REPLY = "Your Telegram account is now linked to your agent."
INVALID_REPLY = "This link is invalid or has expired. Request a new one from the dashboard."
FAILED_REPLY = "Linking failed on our side. Please try the same link again in a moment."
WELCOME_REPLY = "Open the link from your dashboard to connect this chat to your agent."


class ChannelManager:
    """Singleton that manages all channel adapters and routes messages."""

    _instance = None
    _adapters: dict[str, ChannelAdapter]
    gateway_factory: Callable[[], GatewayClient] = staticmethod(GatewayClient.from_settings)

    def __new__(cls):
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._adapters = {}
            cls._instance = inst
        return cls._instance

    async def start(self):
        """Start all adapters that have credentials configured."""
        from app.config import settings

        # Telegram adapter
        if settings.telegram_bot_token:
            try:
                from app.channels.telegram import TelegramAdapter
                adapter = TelegramAdapter(settings.telegram_bot_token)
                await self.register(adapter)
                logger.info("Telegram adapter started")
            except ImportError:
                logger.info("Telegram adapter not available (python-telegram-bot not installed)")
            except Exception as e:
                logger.warning(f"Failed to start Telegram adapter: {e}")

    async def register(self, adapter: ChannelAdapter):
        """Wire an adapter to the claim handler and connect it."""
        adapter.set_message_handler(self._handle_inbound)
        await adapter.connect()
        self._adapters[adapter.channel_type] = adapter

    async def stop(self):
        """Stop all adapters."""
        for name, adapter in self._adapters.items():
            try:
                await adapter.disconnect()
                logger.info(f"Channel adapter '{name}' stopped")
            except Exception as e:
                logger.warning(f"Error stopping adapter '{name}': {e}")
        self._adapters.clear()

    async def _reply(self, msg: InboundMessage, content: str):
        adapter = self._adapters.get(msg.channel_type)
        if adapter and adapter.is_connected():
            await adapter.send_message(OutboundMessage(
                external_id=msg.external_id,
                content=content,
            ))

    async def _handle_inbound(self, msg: InboundMessage):
        """Handle an inbound message from a channel adapter."""
        if msg.command != "start":
            return
        if not msg.command_args:
            await self._reply(msg, WELCOME_REPLY)
            return

        reply = await self.redeem(msg.command_args[0], msg.channel_type, msg.sender_id)
        await self._reply(msg, reply)

    async def redeem(self, token: str, channel_type: str, channel_user_id: str) -> str:
        """Redeem a claim for a channel user. Returns the reply to show them."""
        gateway: Optional[GatewayClient] = None
        try:
            gateway = self.gateway_factory()
            async with AsyncSessionLocal() as db:
                await resolve_claim(
                    db, token, channel_user_id, gateway, channel_type=channel_type
                )
            return LINKED_REPLY
        except InvalidOrExpiredClaim:
            return INVALID_REPLY
        except (GatewayError, ConfigurationError) as e:
            logger.error(f"Claim redemption via {channel_type} failed: {e}")
            return FAILED_REPLY
        finally:
            if gateway is not None:
                await gateway.close()
