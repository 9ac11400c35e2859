"""Call session model: the single in-flight call and its outbound state table.

Only one CallSession exists at a time. The orchestrator owns it and replaces
it wholesale on reset, so fields are never cleared one by one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from wa_call_bridge.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from wa_call_bridge.base_peer_engine import BasePeerConnection
    from wa_call_bridge.signaling import SignalingChannel

logger = logging.getLogger(__name__)


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class OutboundStatus(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    WAITING_FOR_SDP = "waiting-for-sdp"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"


# Forward transitions only; every status may also move to ENDED via end().
_TRANSITIONS: dict[OutboundStatus, frozenset[OutboundStatus]] = {
    OutboundStatus.IDLE: frozenset({OutboundStatus.INITIATING}),
    OutboundStatus.INITIATING: frozenset({OutboundStatus.WAITING_FOR_SDP}),
    OutboundStatus.WAITING_FOR_SDP: frozenset({OutboundStatus.RINGING}),
    OutboundStatus.RINGING: frozenset({OutboundStatus.CONNECTED}),
    OutboundStatus.CONNECTED: frozenset(),
    OutboundStatus.ENDED: frozenset(),
}


@dataclass
class CallSession:
    """State of the single active call."""
    direction: Optional[CallDirection] = None
    call_id: Optional[str] = None
    call_id_provisional: bool = False        # locally generated, not from the provider
    status: OutboundStatus = OutboundStatus.IDLE
    phone_number: Optional[str] = None
    caller_name: Optional[str] = None

    browser_offer_sdp: Optional[str] = None
    provider_offer_sdp: Optional[str] = None

    browser_peer: Optional["BasePeerConnection"] = None
    provider_peer: Optional["BasePeerConnection"] = None
    browser_audio_sink: list[Any] = field(default_factory=list)
    provider_audio_sink: list[Any] = field(default_factory=list)

    # Routing only: the session never closes this channel.
    signaling: Optional["SignalingChannel"] = None

    bridged: bool = False
    bridge_task: Optional[asyncio.Task] = None
    accept_task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        """A call (inbound or outbound) currently owns the session."""
        return self.direction is not None

    @property
    def is_outbound(self) -> bool:
        return self.direction is CallDirection.OUTBOUND

    @property
    def has_both_offers(self) -> bool:
        return bool(self.browser_offer_sdp) and bool(self.provider_offer_sdp)

    @property
    def bridge_in_progress(self) -> bool:
        return self.bridge_task is not None and not self.bridge_task.done()

    def is_outbound_match(self, call_id: Optional[str]) -> bool:
        """Whether call_id identifies this session's outbound call."""
        return self.is_outbound and self.call_id is not None and self.call_id == call_id

    def transition(self, target: OutboundStatus) -> None:
        """Move the outbound status along the state table.

        Raises:
            InvalidTransitionError: If the table does not allow the move.
        """
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, target.value)
        logger.info("Outbound call %s: %s -> %s", self.call_id or "-", self.status.value, target.value)
        self.status = target

    def end(self) -> None:
        """Mark the session as finished. Called right before it is discarded."""
        self.status = OutboundStatus.ENDED

    def summary(self) -> dict:
        """JSON-friendly view for health checks and logs."""
        return {
            "active": self.is_active,
            "direction": self.direction.value if self.direction else None,
            "call_id": self.call_id,
            "status": self.status.value,
            "phone_number": self.phone_number,
            "has_browser_offer": self.browser_offer_sdp is not None,
            "has_provider_offer": self.provider_offer_sdp is not None,
            "bridge_in_progress": self.bridge_in_progress,
            "bridged": self.bridged,
        }
