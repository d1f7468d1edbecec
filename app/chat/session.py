"""
Live chat session with an agent on the gateway WebSocket.

One GatewaySession per chat view. It owns its transport handle and its
reconnect timer; nothing is process-wide.

    IDLE -> CONNECTING -> CONNECTED -> [ERROR ->] IDLE
    IDLE/ERROR --(policy delay)--> CONNECTING

An abnormal close passes through ERROR (with a message) before IDLE; a
clean close goes straight to IDLE. Both schedule a reconnect.

Every connection attempt fetches a new credential. Callbacks, the receive
loop and the reconnect timer all run on one event loop, so session state is
never touched concurrently.

Usage:
    credentials = TokenEndpointCredentials("https://dash.example.com", access_token)
    session = GatewaySession.from_settings(agent_id, credentials)
    await session.open()
    await session.wait_for_status(SessionStatus.CONNECTED, SessionStatus.ERROR)
    await session.send("hello")
    ...
    await session.close()
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from app.chat.credentials import ChatCredential, CredentialSource
from app.chat.reconnect import FixedDelay, ReconnectPolicy
from app.chat.transcript import Transcript, TranscriptEntry
from app.config import get_settings
from app.errors import ConfigurationError, CredentialUnavailable, NotConnected

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 3.0

Connector = Callable[[str], Awaitable[Any]]
Listener = Callable[[str, "GatewaySession"], None]


class SessionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionEvent(str, Enum):
    STATUS = "status"
    TRANSCRIPT = "transcript"
    BANNER = "banner"


def _consume_result(task: asyncio.Task) -> None:
    # Retrieve the outcome of a fetch nobody awaits anymore
    if not task.cancelled():
        task.exception()


def _message_id(payload: dict) -> Optional[str]:
    value = payload.get("messageId")
    if value is None or value == "":
        return None
    return str(value)


class GatewaySession:
    """Resilient duplex connection for one agent's chat."""

    def __init__(
        self,
        agent_id: str,
        ws_url: str,
        credentials: CredentialSource,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        connect: Optional[Connector] = None,
    ) -> None:
        self.agent_id = agent_id
        self.ws_url = ws_url
        self._credentials = credentials
        self._policy = reconnect_policy or FixedDelay(DEFAULT_RECONNECT_DELAY)
        self._connect = connect or websockets.connect

        self.status = SessionStatus.IDLE
        self.error_message: Optional[str] = None  # connection problems
        self.banner: Optional[str] = None  # gateway "error" frames
        self.transcript = Transcript()
        self.last_credential: Optional[ChatCredential] = None

        self._ws: Any = None
        self._run_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._attempt = 0
        self._closed = False
        self._listeners: List[Listener] = []
        self._waiters: List[Tuple[Set[SessionStatus], asyncio.Future]] = []

    @classmethod
    def from_settings(cls, agent_id: str, credentials: CredentialSource) -> "GatewaySession":
        """Session against GATEWAY_WS_URL with a fixed RECONNECT_DELAY_SECONDS delay."""
        settings = get_settings()
        if not settings.gateway_ws_url:
            raise ConfigurationError("GATEWAY_WS_URL is not set")
        return cls(
            agent_id,
            settings.gateway_ws_url,
            credentials,
            reconnect_policy=FixedDelay(settings.reconnect_delay_seconds),
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def messages(self) -> List[dict]:
        return [entry.to_dict() for entry in self.transcript]

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event.value, self)
            except Exception as e:
                logger.error(f"Session listener failed on {event.value}: {e}", exc_info=True)

    def _set_status(self, status: SessionStatus) -> None:
        if status is self.status:
            return
        logger.debug(f"Session {self.agent_id}: {self.status.value} -> {status.value}")
        self.status = status
        for wanted, future in list(self._waiters):
            if status in wanted and not future.done():
                future.set_result(status)
        self._notify(SessionEvent.STATUS)

    async def wait_for_status(
        self, *statuses: SessionStatus, timeout: Optional[float] = None
    ) -> SessionStatus:
        """Wait until the session reaches one of ``statuses``."""
        if self.status in statuses:
            return self.status
        future = asyncio.get_running_loop().create_future()
        waiter = (set(statuses), future)
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self._waiters.remove(waiter)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Start connecting. Returns immediately; observe ``status``.

        Calling open() again after a credential failure is the manual
        retry; it is a no-op while an attempt is already running.
        """
        if self._closed:
            raise RuntimeError("Session is closed")
        if self._run_task is not None and not self._run_task.done():
            return
        self._cancel_reconnect()
        self._start_attempt()

    async def close(self) -> None:
        """Cancel any pending reconnect and close the transport. Terminal."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._cancel_reconnect()

        task, self._run_task = self._run_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing gateway socket: {e}")
        self._set_status(SessionStatus.IDLE)

    def _start_attempt(self) -> None:
        self._generation += 1
        self._run_task = asyncio.create_task(self._run(self._generation))

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        self._attempt += 1
        delay = self._policy.next_delay(self._attempt)
        logger.info(f"Session {self.agent_id}: reconnecting in {delay:.1f}s (attempt {self._attempt})")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closed:
            return
        self._reconnect_task = None
        self._start_attempt()

    def _fail(self, message: str) -> None:
        self.error_message = message
        self._set_status(SessionStatus.ERROR)

    # ------------------------------------------------------------------
    # Connection attempt
    # ------------------------------------------------------------------

    async def _fetch_credential(self, generation: int) -> Optional[ChatCredential]:
        # The request runs in its own task so close() can cancel the attempt
        # while the fetch itself completes and is discarded
        fetch_task = asyncio.create_task(self._credentials.fetch())
        fetch_task.add_done_callback(_consume_result)
        try:
            credential = await asyncio.shield(fetch_task)
        except CredentialUnavailable as e:
            if not self._is_stale(generation):
                self._fail(str(e))
            return None
        except Exception as e:
            logger.error(f"Chat token request failed: {e}", exc_info=True)
            if not self._is_stale(generation):
                self._fail("Connection failed")
            return None

        if self._is_stale(generation):
            return None
        if credential.agent_id != self.agent_id:
            self._fail("Chat token was issued for a different agent")
            return None
        return credential

    async def _run(self, generation: int) -> None:
        self.error_message = None
        self._set_status(SessionStatus.CONNECTING)

        credential = await self._fetch_credential(generation)
        if credential is None:
            # No automatic retry until open() is called again
            return
        self.last_credential = credential

        try:
            ws = await self._connect(self.ws_url)
        except Exception as e:
            if self._is_stale(generation):
                return
            logger.warning(f"Gateway WebSocket connect failed: {e}")
            self._fail(f"WebSocket error: {e}")
            self._schedule_reconnect()
            return

        if self._is_stale(generation):
            await ws.close()
            return
        self._ws = ws

        abnormal: Optional[str] = None
        try:
            await ws.send(json.dumps({
                "type": "identify",
                "agentId": credential.agent_id,
                "token": credential.token,
            }))
            self._attempt = 0
            self._set_status(SessionStatus.CONNECTED)

            async for frame in ws:
                if self._is_stale(generation):
                    break
                self._handle_frame(frame)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            abnormal = f"WebSocket error: {e}"
        except Exception as e:
            logger.error(f"Gateway session receive loop failed: {e}", exc_info=True)
            abnormal = f"WebSocket error: {e}"

        if self._is_stale(generation):
            return
        self._ws = None
        if abnormal:
            logger.warning(f"Session {self.agent_id} dropped: {abnormal}")
            self._fail(abnormal)
        self._set_status(SessionStatus.IDLE)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, text: str) -> Optional[TranscriptEntry]:
        """Send a user turn. Echoed into the transcript before transmission."""
        text = text.strip()
        if not text:
            return None
        if self.status is not SessionStatus.CONNECTED or self._ws is None:
            raise NotConnected("Session is not connected")

        entry = self.transcript.add_user_message(text)
        self._notify(SessionEvent.TRANSCRIPT)
        try:
            await self._ws.send(json.dumps({
                "type": "user_message",
                "agentId": self.agent_id,
                "text": text,
            }))
        except ConnectionClosed as e:
            # The receive loop sees the same close and schedules the reconnect
            logger.warning(f"User message lost, connection closed: {e}")
        return entry

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_frame(self, frame: Any) -> None:
        if isinstance(frame, bytes):
            try:
                frame = frame.decode("utf-8")
            except UnicodeDecodeError:
                return
        try:
            payload = json.loads(frame)
        except (TypeError, ValueError):
            return
        if not isinstance(payload, dict):
            return

        kind = payload.get("type")
        if kind == "assistant_delta":
            delta = payload.get("delta")
            if isinstance(delta, str) and delta:
                self.transcript.apply_delta(delta, _message_id(payload))
                self._notify(SessionEvent.TRANSCRIPT)
        elif kind == "assistant_message":
            text = payload.get("text")
            if isinstance(text, str) and text:
                self.transcript.add_assistant_message(text, _message_id(payload))
                self._notify(SessionEvent.TRANSCRIPT)
        elif kind == "error":
            text = payload.get("text")
            if isinstance(text, str) and text:
                self.banner = text
                self._notify(SessionEvent.BANNER)
