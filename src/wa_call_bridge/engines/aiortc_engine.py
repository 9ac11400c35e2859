"""aiortc-backed peer engine.

aiortc gathers ICE candidates before setLocalDescription returns and embeds
them in the local SDP, so the ICE-candidate callback is never fired: the
browser receives every candidate inside `browser-answer`.

Tracks received on one connection are forwarded to the other through a
shared MediaRelay, which lets a single remote track feed several consumers.
"""

import logging
from typing import Any, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaRelay
from aiortc.sdp import candidate_from_sdp

from wa_call_bridge.base_peer_engine import (
    BasePeerConnection,
    BasePeerEngine,
    CandidateHandler,
    TrackHandler,
)
from wa_call_bridge.config import IceServerConfig

logger = logging.getLogger(__name__)


class AiortcPeerConnection(BasePeerConnection):
    """A single aiortc RTCPeerConnection."""

    def __init__(self, pc: RTCPeerConnection, relay: MediaRelay):
        self._pc = pc
        self._relay = relay

        @pc.on("connectionstatechange")
        async def on_state_change():
            logger.info("aiortc: connection state is %s", pc.connectionState)

    def on_track(self, handler: TrackHandler) -> None:
        self._pc.on("track", handler)

    def on_ice_candidate(self, handler: CandidateHandler) -> None:
        # Candidates arrive inside the local SDP instead
        logger.debug("aiortc: trickle ICE not used, candidate handler ignored")

    async def set_remote_offer(self, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))

    async def create_answer(self) -> str:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._pc.localDescription.sdp

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(self._relay.subscribe(track))

    async def add_ice_candidate(self, candidate: dict) -> None:
        raw = candidate.get("candidate") or ""
        if not raw:
            # End-of-candidates marker
            return
        if raw.startswith("candidate:"):
            raw = raw[len("candidate:"):]
        ice = candidate_from_sdp(raw)
        ice.sdpMid = candidate.get("sdpMid")
        ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(ice)

    async def close(self) -> None:
        await self._pc.close()


class AiortcPeerEngine(BasePeerEngine):
    """Creates aiortc peer connections sharing one media relay."""

    def __init__(self):
        self._relay = MediaRelay()

    def create_peer_connection(
        self, ice_servers: Optional[list[IceServerConfig]] = None
    ) -> AiortcPeerConnection:
        servers = [
            RTCIceServer(
                urls=server.urls,
                username=server.username or None,
                credential=server.credential or None,
            )
            for server in ice_servers or []
        ]
        pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))
        return AiortcPeerConnection(pc, self._relay)

    @property
    def engine_name(self) -> str:
        return "aiortc"
