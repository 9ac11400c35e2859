"""Shared test fixtures."""

import asyncio

import pytest
from unittest.mock import AsyncMock
from fastapi import WebSocket

from wa_call_bridge.base_peer_engine import BasePeerConnection, BasePeerEngine
from wa_call_bridge.config import BridgeConfig
from wa_call_bridge.orchestrator import BridgeOrchestrator
from wa_call_bridge.provider_client import CallActionResult, WhatsAppCallClient
from wa_call_bridge.signaling import SignalingChannel, SignalingHub

BROWSER_ANSWER_SDP = (
    "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\na=setup:active\r\na=sendrecv\r\n"
)
PROVIDER_ANSWER_SDP = (
    "v=0\r\no=- 2 2 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\na=setup:actpass\r\na=sendrecv\r\n"
    "a=note:setup:actpass\r\n"
)


class FakeTrack:
    def __init__(self, kind: str = "audio", label: str = ""):
        self.kind = kind
        self.label = label

    def __repr__(self):
        return f"FakeTrack({self.kind}, {self.label})"


class FakePeerConnection(BasePeerConnection):
    """In-memory peer: fires its remote tracks when the offer is applied."""

    def __init__(self, role, engine, remote_tracks, answer_sdp, local_candidates):
        self.role = role
        self._engine = engine
        self._remote_tracks = remote_tracks
        self._answer_sdp = answer_sdp
        self._local_candidates = local_candidates
        self._track_handler = None
        self._candidate_handler = None
        self.remote_offer = None
        self.local_sdp = None
        self.added_tracks = []
        self.ice_candidates = []
        self.closed = False

    def on_track(self, handler):
        self._track_handler = handler

    def on_ice_candidate(self, handler):
        self._candidate_handler = handler

    async def set_remote_offer(self, sdp):
        self._engine.log.append(f"{self.role}:offer")
        self.remote_offer = sdp
        for track in self._remote_tracks:
            if self._track_handler:
                self._track_handler(track)

    async def create_answer(self):
        self._engine.log.append(f"{self.role}:answer")
        for candidate in self._local_candidates:
            if self._candidate_handler:
                await self._candidate_handler(candidate)
        self.local_sdp = self._answer_sdp
        return self._answer_sdp

    def add_track(self, track):
        self._engine.log.append(f"{self.role}:add_track")
        self.added_tracks.append(track)

    async def add_ice_candidate(self, candidate):
        self.ice_candidates.append(candidate)

    async def close(self):
        self.closed = True


class FakePeerEngine(BasePeerEngine):
    """Creates browser-side then provider-side fake peers, alternating."""

    def __init__(self):
        self.browser_tracks = [FakeTrack("audio", "browser-mic"), FakeTrack("video", "browser-cam")]
        self.provider_tracks = [FakeTrack("audio", "whatsapp")]
        self.browser_answer = BROWSER_ANSWER_SDP
        self.provider_answer = PROVIDER_ANSWER_SDP
        self.browser_candidates = []
        self.created: list[FakePeerConnection] = []
        self.log: list[str] = []

    def create_peer_connection(self, ice_servers=None):
        if len(self.created) % 2 == 0:
            peer = FakePeerConnection(
                "browser", self, self.browser_tracks, self.browser_answer, self.browser_candidates,
            )
        else:
            peer = FakePeerConnection("provider", self, self.provider_tracks, self.provider_answer, [])
        self.created.append(peer)
        return peer

    @property
    def browser_peer(self):
        return self.created[0] if self.created else None

    @property
    def provider_peer(self):
        return self.created[1] if len(self.created) > 1 else None

    @property
    def engine_name(self):
        return "fake"


@pytest.fixture
def mock_websocket():
    """Create a mock FastAPI WebSocket."""
    ws = AsyncMock(spec=WebSocket)
    ws.receive_json = AsyncMock()
    ws.send_json = AsyncMock()
    ws.accept = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.fixture
def bridge_config():
    return BridgeConfig(
        phone_number_id="1234567890",
        access_token="test-token",
        verify_token="verify-me",
        provider_track_timeout=0.2,
        accept_delay=0.01,
    )


@pytest.fixture
def fake_engine():
    return FakePeerEngine()


@pytest.fixture
def mock_client():
    client = AsyncMock(spec=WhatsAppCallClient)
    client.initiate_call.return_value = CallActionResult(success=True, call_id="wacid.out-1")
    client.answer.return_value = CallActionResult(success=True)
    client.reject.return_value = CallActionResult(success=True)
    client.terminate.return_value = CallActionResult(success=True)
    return client


@pytest.fixture
def hub():
    return SignalingHub()


@pytest.fixture
def browser(hub, mock_websocket):
    """A connected browser channel."""
    channel = SignalingChannel(mock_websocket)
    hub.add(channel)
    return channel


@pytest.fixture
def orchestrator(fake_engine, mock_client, hub, bridge_config):
    return BridgeOrchestrator(fake_engine, mock_client, hub, bridge_config)


def sent_events(ws) -> list[tuple[str, object]]:
    """(event, data) pairs sent over a mock WebSocket, in order."""
    return [(c.args[0]["event"], c.args[0]["data"]) for c in ws.send_json.call_args_list]


def sent_event_names(ws) -> list[str]:
    return [name for name, _ in sent_events(ws)]


async def drain(session) -> None:
    """Wait for a session's bridge and accept tasks to finish."""
    if session.bridge_task is not None:
        await asyncio.gather(session.bridge_task, return_exceptions=True)
    if session.accept_task is not None:
        await asyncio.gather(session.accept_task, return_exceptions=True)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
