"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests,
including in-memory stand-ins for the WebRTC objects the transport drives.
"""

import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["APP_ENV"] = "test"
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["REALTIME_TOKEN_ENDPOINT"] = "http://127.0.0.1:9/api/session"
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.gettempdir()}/medinterp_test.db"
os.environ["WEBHOOK_URL"] = ""
os.environ["LOG_LEVEL"] = "WARNING"


# ============================================================================
# WebRTC fakes
# ============================================================================

class FakeEmitter:
    """Minimal `on(event, handler)` registry, like pyee's emitter."""

    def __init__(self) -> None:
        self.handlers: Dict[str, Any] = {}

    def on(self, event: str, handler: Any = None):
        if handler is None:
            def decorator(f):
                self.handlers[event] = f
                return f
            return decorator
        self.handlers[event] = handler
        return handler

    def emit(self, event: str, *args: Any) -> Any:
        handler = self.handlers.get(event)
        if handler is not None:
            return handler(*args)
        return None


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str = "response") -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.sent: List[str] = []
        self.close_calls = 0

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def receive(self, message: str) -> None:
        self.emit("message", message)

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise RuntimeError("channel is not open")
        self.sent.append(data)

    def close(self) -> None:
        self.close_calls += 1
        self.readyState = "closed"


class FakeTrack:
    kind = "audio"

    def __init__(self) -> None:
        self.stopped = False

    async def recv(self):
        return MagicMock()

    def stop(self) -> None:
        self.stopped = True


class FakeTransceiver:
    def __init__(self) -> None:
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakePeerConnection(FakeEmitter):
    def __init__(self, remote_track: Any = None) -> None:
        super().__init__()
        self.channels: List[FakeDataChannel] = []
        self.tracks: List[Any] = []
        self.transceivers = [FakeTransceiver()]
        self.localDescription = None
        self.remoteDescription = None
        self.closed = False
        self.remote_track = remote_track

    def createDataChannel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    def addTrack(self, track: Any) -> None:
        self.tracks.append(track)

    async def createOffer(self):
        return SimpleNamespace(sdp="v=0\r\no=- offer", type="offer")

    async def setLocalDescription(self, description: Any) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: Any) -> None:
        self.remoteDescription = description
        if self.remote_track is not None:
            self.emit("track", self.remote_track)

    def getTransceivers(self) -> List[FakeTransceiver]:
        return list(self.transceivers)

    async def close(self) -> None:
        self.closed = True


class FakePlayback:
    def __init__(self) -> None:
        self.tracks: List[Any] = []
        self.started = False
        self.stopped = False

    def addTrack(self, track: Any) -> None:
        self.tracks.append(track)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class FakeSender:
    """Records outbound events for the protocol handler."""

    def __init__(self, is_open: bool = True) -> None:
        self.is_open = is_open
        self.events: List[Dict[str, Any]] = []

    def send_event(self, event: Dict[str, Any]) -> bool:
        if not self.is_open:
            return False
        self.events.append(event)
        return True

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


class FakeTransport:
    """Stand-in for SessionTransport used by controller tests."""

    def __init__(self) -> None:
        self.on_status = None
        self.data_channel = FakeDataChannel()
        self.open_calls = 0
        self.close_calls = 0
        self.open_error = None
        self.current_volume = 0.0
        self.local_speaking = False
        self.on_message = None
        self.on_channel_open = None
        self.channel = None

    async def open(self, on_message, on_channel_open=None):
        from medinterp.realtime.transport import SideChannel

        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self.on_message = on_message
        self.on_channel_open = on_channel_open
        self.channel = SideChannel(self.data_channel)
        return self.channel

    def open_channel(self) -> None:
        self.data_channel.readyState = "open"
        if self.on_channel_open is not None:
            self.on_channel_open(self.channel)

    async def close(self) -> None:
        self.close_calls += 1
        self.data_channel.readyState = "closed"
        self.channel = None


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def peer_connection():
    return FakePeerConnection(remote_track=FakeTrack())


@pytest.fixture
def capture():
    return SimpleNamespace(audio=FakeTrack())


@pytest.fixture
def playback():
    return FakePlayback()


@pytest.fixture
def negotiator():
    mock = MagicMock()
    mock.exchange = AsyncMock(return_value="v=0\r\no=- answer")
    return mock


@pytest.fixture
def session_config():
    from medinterp.config import SessionConfig

    return SessionConfig(
        language="english",
        ending_delay_s=0.0,
        summary_fallback_delay_s=0.0,
        end_session_delay_s=0.0,
        settle_delay_s=0.0,
        max_log_entries=0,
    )


@pytest.fixture
def repository(tmp_path):
    """Conversation repository on a temporary SQLite file."""
    from medinterp.db import ConversationRepository, Database, get_engine

    engine = get_engine(f"sqlite:///{tmp_path / 'conversations.db'}")
    return ConversationRepository(Database(engine))


@pytest.fixture
def sample_turns():
    from medinterp.realtime.conversation import ConversationTurn, TurnRole

    return [
        ConversationTurn(id="1", role=TurnRole.USER, text="Me duele la cabeza", is_final=True),
        ConversationTurn(id="2", role=TurnRole.ASSISTANT, text="My head hurts", is_final=True),
        ConversationTurn(id="3", role=TurnRole.USER, text="", is_final=False),
    ]
