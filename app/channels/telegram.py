"""
Telegram channel adapter using python-telegram-bot (v21+).

Uses long polling mode, so no public URL or webhook is needed. Only the
``/start <token>`` deep-link command is handled: the payload is a binding
claim token issued by the dashboard.
Telegram ids can be negative (group chats); they are stored as strings.
"""

import logging
from typing import Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from app.channels.base import ChannelAdapter, InboundMessage, OutboundMessage

logger = logging.getLogger(__name__)

# Telegram message length limit
_MAX_MESSAGE_LENGTH = 4096


def build_start_message(update: Update, args: list[str]) -> Optional[InboundMessage]:
    """Translate a /start update into an InboundMessage (None if unusable)."""
    message = update.effective_message
    chat = update.effective_chat
    user = update.effective_user
    if not message or not chat or not user:
        return None
    return InboundMessage(
        channel_type="telegram",
        external_id=str(chat.id),
        sender_id=str(user.id),
        sender_name=user.full_name,
        content=message.text or "",
        command="start",
        command_args=list(args),
        external_message_id=str(message.message_id),
    )


class TelegramAdapter(ChannelAdapter):
    """Adapter for Telegram Bot API via long polling."""

    channel_type = "telegram"

    def __init__(self, bot_token: str):
        self._bot_token = bot_token
        self._application: Optional[Application] = None
        self._connected = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self._application = (
            Application.builder()
            .token(self._bot_token)
            .build()
        )

        self._application.add_handler(CommandHandler("start", self._on_start))

        # Initialize and start long polling
        await self._application.initialize()
        await self._application.start()
        await self._application.updater.start_polling(
            drop_pending_updates=True,
        )

        self._connected = True
        logger.info("Telegram adapter connected via long polling")

    async def disconnect(self) -> None:
        self._connected = False
        if self._application:
            try:
                if self._application.updater and self._application.updater.running:
                    await self._application.updater.stop()
                if self._application.running:
                    await self._application.stop()
                await self._application.shutdown()
            except Exception as e:
                logger.warning(f"Error stopping Telegram adapter: {e}")
            self._application = None

    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, message: OutboundMessage) -> None:
        if not self._application or not self._application.bot:
            raise RuntimeError("Telegram adapter not connected")

        try:
            chat_id = int(message.external_id)
        except ValueError:
            logger.error(f"Invalid Telegram chat_id: {message.external_id}")
            return

        await self._application.bot.send_message(
            chat_id=chat_id,
            text=message.content[:_MAX_MESSAGE_LENGTH],
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _on_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle ``/start <token>`` from a dashboard deep link."""
        try:
            inbound = build_start_message(update, context.args or [])
            if inbound and self._message_handler:
                await self._message_handler(inbound)
        except Exception as e:
            logger.error(f"Error handling Telegram /start: {e}", exc_info=True)
