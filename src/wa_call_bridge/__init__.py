"""wa-call-bridge — relays WhatsApp Business calls to a browser over WebRTC.

The bridge holds two peer connections (browser and WhatsApp), cross-wires
their audio and drives the WhatsApp calling API through its
pre_accept/accept handshake.
"""

__version__ = "0.1.0"

from wa_call_bridge.base_peer_engine import BasePeerConnection, BasePeerEngine
from wa_call_bridge.config import BridgeConfig, IceServerConfig
from wa_call_bridge.events import CallEvent, CallEventType, parse_call_event
from wa_call_bridge.orchestrator import BridgeOrchestrator
from wa_call_bridge.provider_client import CallAction, CallActionResult, WhatsAppCallClient
from wa_call_bridge.sdp import force_active_setup_role
from wa_call_bridge.session import CallDirection, CallSession, OutboundStatus
from wa_call_bridge.signaling import SignalingChannel, SignalingHub
from wa_call_bridge.exceptions import (
    CallBridgeError,
    ConfigError,
    ProviderApiError,
    MediaNegotiationError,
    CallSessionBusyError,
    InvalidTransitionError,
    EngineNotAvailableError,
)

__all__ = [
    "BasePeerConnection",
    "BasePeerEngine",
    "BridgeConfig",
    "IceServerConfig",
    "CallEvent",
    "CallEventType",
    "parse_call_event",
    "BridgeOrchestrator",
    "CallAction",
    "CallActionResult",
    "WhatsAppCallClient",
    "force_active_setup_role",
    "CallDirection",
    "CallSession",
    "OutboundStatus",
    "SignalingChannel",
    "SignalingHub",
    "CallBridgeError",
    "ConfigError",
    "ProviderApiError",
    "MediaNegotiationError",
    "CallSessionBusyError",
    "InvalidTransitionError",
    "EngineNotAvailableError",
]
