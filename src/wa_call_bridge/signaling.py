"""Browser signaling over a FastAPI WebSocket.

Every frame in either direction is a JSON object:

  {"event": "<name>", "data": <payload>}

Browser → server events:
  browser-offer            data: SDP offer string
  browser-candidate        data: {"candidate", "sdpMid", "sdpMLineIndex"}
  reject-call              data: call id
  terminate-call           data: call id
  reject-outbound-call     data: null
  terminate-outbound-call  data: null

Server → browser events are listed in OUTBOUND_EVENTS. Lifecycle events are
broadcast to every connected tab; `browser-answer`, `browser-candidate` and
`start-browser-timer` go only to the channel bound to the call session.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

# Browser → server
BROWSER_OFFER = "browser-offer"
BROWSER_CANDIDATE = "browser-candidate"
REJECT_CALL = "reject-call"
TERMINATE_CALL = "terminate-call"
REJECT_OUTBOUND_CALL = "reject-outbound-call"
TERMINATE_OUTBOUND_CALL = "terminate-outbound-call"

INBOUND_EVENTS = frozenset({
    BROWSER_OFFER,
    BROWSER_CANDIDATE,
    REJECT_CALL,
    TERMINATE_CALL,
    REJECT_OUTBOUND_CALL,
    TERMINATE_OUTBOUND_CALL,
})

# Server → browser
BROWSER_ANSWER = "browser-answer"
START_BROWSER_TIMER = "start-browser-timer"
CALL_IS_COMING = "call-is-coming"
CALL_ENDED = "call-ended"
OUTGOING_CALL_INITIATED = "outgoing-call-initiated"
OUTGOING_CALL_CONNECTED = "outgoing-call-connected"
OUTGOING_CALL_REJECTED = "outgoing-call-rejected"
OUTGOING_CALL_TIMEOUT = "outgoing-call-timeout"
WEBRTC_ERROR = "webrtc-error"
START_OUTGOING_CALL_WEBRTC = "start-outgoing-call-webrtc"

OUTBOUND_EVENTS = frozenset({
    BROWSER_ANSWER,
    BROWSER_CANDIDATE,
    START_BROWSER_TIMER,
    CALL_IS_COMING,
    CALL_ENDED,
    OUTGOING_CALL_INITIATED,
    OUTGOING_CALL_CONNECTED,
    OUTGOING_CALL_REJECTED,
    OUTGOING_CALL_TIMEOUT,
    WEBRTC_ERROR,
    START_OUTGOING_CALL_WEBRTC,
})


class SignalingChannel:
    """One browser connection.

    The channel never raises on send: a tab that went away is logged and
    marked closed so the orchestrator's state machine keeps running.
    """

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self.channel_id = uuid.uuid4().hex[:8]
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def receive(self) -> tuple[Optional[str], Any]:
        """Read the next browser frame.

        Returns:
            (event, data). event is None for frames that are not an event object.

        Raises:
            WebSocketDisconnect: When the browser goes away.
        """
        message = await self._websocket.receive_json()
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.warning("Signaling[%s]: ignoring malformed frame: %r", self.channel_id, message)
            return None, None
        return message["event"], message.get("data")

    async def emit(self, event: str, data: Any = None) -> None:
        """Send an event to this browser."""
        if self._closed:
            logger.debug("Signaling[%s]: dropping '%s', channel closed", self.channel_id, event)
            return
        try:
            await self._websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.warning("Signaling[%s]: failed to send '%s': %s", self.channel_id, event, e)
            self._closed = True

    def mark_closed(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return f"SignalingChannel({self.channel_id})"


class SignalingHub:
    """Set of connected browser channels, used for broadcast."""

    def __init__(self):
        self._channels: dict[str, SignalingChannel] = {}

    def add(self, channel: SignalingChannel) -> None:
        self._channels[channel.channel_id] = channel
        logger.info("Signaling: browser %s connected (%d open)", channel.channel_id, len(self._channels))

    def remove(self, channel: SignalingChannel) -> None:
        if self._channels.pop(channel.channel_id, None) is not None:
            logger.info(
                "Signaling: browser %s disconnected (%d open)", channel.channel_id, len(self._channels),
            )

    @property
    def channels(self) -> list[SignalingChannel]:
        return list(self._channels.values())

    async def broadcast(self, event: str, data: Any = None) -> None:
        """Send an event to every connected browser."""
        logger.debug("Signaling: broadcasting '%s' to %d browsers", event, len(self._channels))
        for channel in self.channels:
            await channel.emit(event, data)
