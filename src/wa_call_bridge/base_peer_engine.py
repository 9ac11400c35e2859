"""Peer engine ABC: the media capability consumed by the bridge.

The orchestrator never talks to a WebRTC library directly. It creates peer
connections through a BasePeerEngine and drives them through the
BasePeerConnection contract below, so tests can substitute an in-memory
engine and deployments can pick a real one.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from wa_call_bridge.config import IceServerConfig

# Receives a remote media track (opaque engine object with a `kind` attribute).
TrackHandler = Callable[[Any], None]
# Receives a local ICE candidate as a browser-compatible dict
# ({"candidate", "sdpMid", "sdpMLineIndex"}).
CandidateHandler = Callable[[dict], Awaitable[None]]


class BasePeerConnection(ABC):
    """Abstract peer connection, one per bridge leg."""

    @abstractmethod
    def on_track(self, handler: TrackHandler) -> None:
        """Register a callback fired for every inbound remote track."""
        ...

    @abstractmethod
    def on_ice_candidate(self, handler: CandidateHandler) -> None:
        """Register a callback fired for every gathered local ICE candidate.

        Engines that embed candidates in the local description may never call it.
        """
        ...

    @abstractmethod
    async def set_remote_offer(self, sdp: str) -> None:
        """Apply a remote SDP offer."""
        ...

    @abstractmethod
    async def create_answer(self) -> str:
        """Create an answer, apply it as local description and return its SDP."""
        ...

    @abstractmethod
    def add_track(self, track: Any) -> None:
        """Send a track (typically received on the other leg) to this peer."""
        ...

    @abstractmethod
    async def add_ice_candidate(self, candidate: dict) -> None:
        """Add a remote ICE candidate in browser dict form."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection and every transport it holds."""
        ...


class BasePeerEngine(ABC):
    """Factory for peer connections."""

    @abstractmethod
    def create_peer_connection(
        self, ice_servers: Optional[list[IceServerConfig]] = None
    ) -> BasePeerConnection:
        """Create an unconnected peer connection."""
        ...

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Engine identifier string (e.g., 'aiortc')."""
        ...
