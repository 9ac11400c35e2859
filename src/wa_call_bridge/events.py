"""Provider call events parsed from WhatsApp webhook payloads.

Payload shape (only the parts read here):

  {"entry": [{"changes": [{"value": {
      "calls": [{"id": "...", "event": "connect", "session": {"sdp": "..."},
                 "duration": 42, "status": "COMPLETED"}],
      "contacts": [{"profile": {"name": "..."}, "wa_id": "..."}]
  }}]}]}
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

UNKNOWN_CALLER = "Unknown"


class CallEventType(str, Enum):
    CONNECT = "connect"
    TERMINATE = "terminate"
    REJECT = "reject"
    TIMEOUT = "timeout"


@dataclass
class CallEvent:
    """A single provider call lifecycle event."""
    call_id: str
    event: str                      # raw event name, may be unrecognized
    sdp: Optional[str] = None
    caller_name: str = UNKNOWN_CALLER
    caller_number: str = UNKNOWN_CALLER
    duration: Optional[int] = None
    status: Optional[str] = None

    @property
    def event_type(self) -> Optional[CallEventType]:
        """The recognized event type, or None for unhandled events."""
        try:
            return CallEventType(self.event)
        except ValueError:
            return None


def _first(value: Any) -> dict:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return {}


def parse_call_event(payload: Any) -> Optional[CallEvent]:
    """Extract the first call event from a webhook payload.

    Returns:
        A CallEvent, or None when the payload holds no call with both an
        id and an event name.
    """
    if not isinstance(payload, dict):
        return None

    change = _first(_first(payload.get("entry")).get("changes"))
    value = change.get("value")
    if not isinstance(value, dict):
        return None

    call = _first(value.get("calls"))
    if not call.get("id") or not call.get("event"):
        return None

    contact = _first(value.get("contacts"))
    profile = contact.get("profile") if isinstance(contact.get("profile"), dict) else {}
    session = call.get("session") if isinstance(call.get("session"), dict) else {}

    return CallEvent(
        call_id=str(call["id"]),
        event=str(call["event"]),
        sdp=session.get("sdp") or None,
        caller_name=profile.get("name") or UNKNOWN_CALLER,
        caller_number=contact.get("wa_id") or UNKNOWN_CALLER,
        duration=call.get("duration"),
        status=call.get("status"),
    )
