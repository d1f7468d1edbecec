"""
Tests for GatewaySession, the client side of the agent chat protocol.

The WebSocket and the token endpoint are replaced with in-process fakes,
so every transition is driven explicitly by the test.
"""
import asyncio

import pytest

from app.chat import FixedDelay, GatewaySession, SessionStatus
from app.config import get_settings
from app.errors import ConfigurationError, NotConnected
from tests.fakes import FakeConnector, FakeCredentials

AGENT_ID = "gw-agent-1"
WS_URL = "ws://gateway.test/ws"


async def eventually(predicate, timeout: float = 1.0):
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def credentials():
    return FakeCredentials(AGENT_ID)


@pytest.fixture
async def session(connector, credentials):
    s = GatewaySession(
        AGENT_ID, WS_URL, credentials,
        reconnect_policy=FixedDelay(0.01),
        connect=connector,
    )
    yield s
    await s.close()


async def _connected(session) -> None:
    await session.open()
    await session.wait_for_status(SessionStatus.CONNECTED, timeout=1)


class TestConnect:

    async def test_identify_is_first_frame(self, session, connector):
        await _connected(session)

        assert connector.urls == [WS_URL]
        assert connector.last.sent_json[0] == {
            "type": "identify",
            "agentId": AGENT_ID,
            "token": "token-1",
        }
        assert session.error_message is None

    async def test_status_sequence(self, session):
        seen = []
        session.add_listener(lambda event, s: seen.append(s.status) if event == "status" else None)

        await _connected(session)
        assert seen == [SessionStatus.CONNECTING, SessionStatus.CONNECTED]

    async def test_open_while_connecting_is_noop(self, session, credentials, connector):
        credentials.gate = asyncio.Event()
        await session.open()
        await session.open()
        credentials.gate.set()
        await session.wait_for_status(SessionStatus.CONNECTED, timeout=1)
        assert credentials.calls == 1
        assert len(connector.sockets) == 1


class TestCredentialFailures:

    async def test_token_failure_is_error_without_retry(self, session, credentials, connector):
        credentials.error = "Agent not provisioned"
        await session.open()
        await session.wait_for_status(SessionStatus.ERROR, timeout=1)

        assert session.error_message == "Agent not provisioned"
        assert not session.reconnect_pending
        await asyncio.sleep(0.05)
        assert credentials.calls == 1
        assert connector.urls == []

    async def test_manual_retry_after_token_failure(self, session, credentials):
        credentials.error = "Unauthorized"
        await session.open()
        await session.wait_for_status(SessionStatus.ERROR, timeout=1)

        credentials.error = None
        await _connected(session)
        assert session.error_message is None
        assert session.last_credential.token == "token-2"

    async def test_credential_for_other_agent_rejected(self, connector):
        s = GatewaySession(AGENT_ID, WS_URL, FakeCredentials("someone-else"), connect=connector)
        await s.open()
        await s.wait_for_status(SessionStatus.ERROR, timeout=1)
        await s.close()
        assert connector.urls == []

    async def test_close_during_token_fetch_discards_result(self, session, credentials, connector):
        credentials.gate = asyncio.Event()
        await session.open()
        await eventually(lambda: credentials.calls == 1)

        await session.close()
        credentials.gate.set()
        await asyncio.sleep(0.05)

        assert connector.urls == []
        assert credentials.completed == 1  # request finished, result dropped
        assert session.status is SessionStatus.IDLE


class TestReconnect:

    async def test_unexpected_close_reconnects_with_fresh_token(self, session, connector):
        history = []
        session.add_listener(
            lambda event, s: history.append((s.status, s.error_message)) if event == "status" else None
        )
        await _connected(session)

        connector.last.drop()
        await eventually(lambda: len(connector.sockets) == 2 and session.status is SessionStatus.CONNECTED)

        statuses = [status for status, _ in history]
        assert statuses == [
            SessionStatus.CONNECTING,
            SessionStatus.CONNECTED,
            SessionStatus.ERROR,
            SessionStatus.IDLE,
            SessionStatus.CONNECTING,
            SessionStatus.CONNECTED,
        ]
        assert history[2][1].startswith("WebSocket error")
        assert history[3][1] == history[2][1]  # message kept while idle
        assert connector.sockets[1].sent_json[0]["token"] == "token-2"

    async def test_clean_close_goes_idle_without_error(self, connector, credentials):
        s = GatewaySession(AGENT_ID, WS_URL, credentials, FixedDelay(10), connect=connector)
        await _connected(s)

        connector.last.finish()
        await s.wait_for_status(SessionStatus.IDLE, timeout=1)
        assert s.error_message is None
        assert s.reconnect_pending
        await s.close()

    async def test_connect_failure_is_error_then_retries(self, session, connector, credentials):
        connector.fail_next = 1
        await session.open()
        await session.wait_for_status(SessionStatus.ERROR, timeout=1)
        assert session.error_message.startswith("WebSocket error")

        await session.wait_for_status(SessionStatus.CONNECTED, timeout=1)
        assert credentials.calls == 2
        assert len(connector.sockets) == 1

    async def test_close_cancels_pending_reconnect(self, connector, credentials):
        s = GatewaySession(AGENT_ID, WS_URL, credentials, FixedDelay(10), connect=connector)
        await _connected(s)

        connector.last.drop()
        await s.wait_for_status(SessionStatus.IDLE, timeout=1)
        assert s.reconnect_pending

        await s.close()
        assert not s.reconnect_pending
        assert s.closed
        assert len(connector.sockets) == 1

    async def test_close_during_slow_connect_stops_attempt(self, session, connector):
        connector.gate = asyncio.Event()
        await session.open()
        await eventually(lambda: connector.urls == [WS_URL])
        attempt = session._run_task

        await session.close()

        assert attempt.done()
        connector.gate.set()
        await asyncio.sleep(0.01)
        assert connector.sockets == []
        assert session.status is SessionStatus.IDLE

    async def test_open_after_close_rejected(self, session):
        await session.close()
        with pytest.raises(RuntimeError):
            await session.open()


class TestInbound:

    async def test_deltas_reassemble(self, session, connector):
        await _connected(session)
        ws = connector.last
        ws.push({"type": "assistant_delta", "delta": "Hel", "messageId": "m1"})
        ws.push({"type": "assistant_delta", "delta": "lo", "messageId": "m1"})

        await eventually(lambda: len(session.transcript) == 1 and session.transcript[0].content == "Hello")

    async def test_assistant_message(self, session, connector):
        await _connected(session)
        connector.last.push({"type": "assistant_message", "text": "Hi there"})

        await eventually(lambda: len(session.transcript) == 1)
        assert session.messages[0]["role"] == "assistant"
        assert session.messages[0]["content"] == "Hi there"

    async def test_error_frame_sets_banner(self, session, connector):
        events = []
        session.add_listener(lambda event, s: events.append(event))
        await _connected(session)

        connector.last.push({"type": "error", "text": "Rate limited"})
        await eventually(lambda: session.banner == "Rate limited")
        assert "banner" in events
        assert session.status is SessionStatus.CONNECTED

    async def test_malformed_frames_ignored(self, session, connector):
        await _connected(session)
        ws = connector.last
        ws.push("not json")
        ws.push("[1, 2, 3]")
        ws.push({"type": "assistant_delta"})
        ws.push({"type": "something_new", "text": "?"})
        ws.push({"type": "assistant_delta", "delta": "ok", "messageId": "m9"})

        await eventually(lambda: len(session.transcript) == 1)
        assert session.transcript[0].content == "ok"
        assert session.status is SessionStatus.CONNECTED

    async def test_listener_failure_does_not_break_session(self, session, connector):
        def bad_listener(event, s):
            raise ValueError("boom")

        session.add_listener(bad_listener)
        await _connected(session)
        connector.last.push({"type": "assistant_message", "text": "still here"})
        await eventually(lambda: len(session.transcript) == 1)


class TestSend:

    async def test_send_when_not_connected(self, session):
        with pytest.raises(NotConnected):
            await session.send("hello")

    async def test_empty_text_is_ignored(self, session):
        assert await session.send("   ") is None
        assert len(session.transcript) == 0

    async def test_local_echo_and_payload(self, session, connector):
        await _connected(session)

        entry = await session.send("  hello agent ")

        assert entry.content == "hello agent"
        assert session.messages == [{"id": entry.id, "role": "user", "content": "hello agent"}]
        assert connector.last.sent_json[-1] == {
            "type": "user_message",
            "agentId": AGENT_ID,
            "text": "hello agent",
        }

    async def test_user_message_splits_assistant_stream(self, session, connector):
        await _connected(session)
        ws = connector.last
        ws.push({"type": "assistant_delta", "delta": "Hel"})
        await eventually(lambda: len(session.transcript) == 1)

        await session.send("stop")
        ws.push({"type": "assistant_delta", "delta": "lo"})
        await eventually(lambda: len(session.transcript) == 3)

        assert [m["content"] for m in session.messages] == ["Hel", "stop", "lo"]


class TestFromSettings:

    def test_uses_configured_url_and_delay(self, credentials, monkeypatch):
        monkeypatch.setenv("GATEWAY_WS_URL", "wss://gateway.test/ws")
        monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "1.5")
        get_settings.cache_clear()

        s = GatewaySession.from_settings(AGENT_ID, credentials)
        assert s.ws_url == "wss://gateway.test/ws"
        assert s._policy.next_delay(1) == 1.5

    def test_missing_ws_url(self, credentials):
        with pytest.raises(ConfigurationError):
            GatewaySession.from_settings(AGENT_ID, credentials)
