"""
Abstract base class for channel adapters.

Each adapter connects to an external messaging platform (Telegram, ...)
and hands claim-redemption requests to the channel manager.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Callable, Awaitable


@dataclass
class InboundMessage:
    """A message received from an external channel."""
    channel_type: str
    external_id: str  # Chat ID on the platform (where replies go)
    sender_id: str  # Platform user ID (what gets bound)
    sender_name: str
    content: str
    command: Optional[str] = None  # e.g. "start" for "/start <token>"
    command_args: list[str] = field(default_factory=list)
    external_message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class OutboundMessage:
    """A message to send to an external channel."""
    external_id: str  # Chat ID to send to
    content: str


MessageHandler = Callable[[InboundMessage], Awaitable[None]]


class ChannelAdapter(ABC):
    """Abstract base class for channel adapters.

    Each adapter manages the connection to a specific messaging platform
    and handles sending/receiving messages.
    """

    channel_type: str = ""
    _message_handler: Optional[MessageHandler] = None

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the messaging platform."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection."""
        ...

    @abstractmethod
    async def send_message(self, message: OutboundMessage) -> None:
        """Send a message to the platform."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the adapter is currently connected."""
        ...

    def set_message_handler(self, handler: MessageHandler):
        """Set the callback for handling inbound messages."""
        self._message_handler = handler
