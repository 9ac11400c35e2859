"""WhatsApp Cloud API calling client.

Every call action is a single POST to `/{phone-number-id}/calls`:

  connect     {"messaging_product": "whatsapp", "to": "<digits>", "action": "connect",
               "session": {"sdp_type": "offer", "sdp": "..."}}
  pre_accept  {"messaging_product": "whatsapp", "call_id": "...", "action": "pre_accept",
  accept       "session": {"sdp_type": "answer", "sdp": "..."}}
  reject      {"messaging_product": "whatsapp", "call_id": "...", "action": "reject"}
  terminate   {"messaging_product": "whatsapp", "call_id": "...", "action": "terminate"}

The response body's boolean `success` is the only success signal. Errors are
never raised to callers: HTTP failures, unexpected bodies and transport
exceptions all come back as CallActionResult(success=False, error=...).
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from wa_call_bridge.config import BridgeConfig

logger = logging.getLogger(__name__)


class CallAction(str, Enum):
    CONNECT = "connect"
    PRE_ACCEPT = "pre_accept"
    ACCEPT = "accept"
    REJECT = "reject"
    TERMINATE = "terminate"


ANSWER_ACTIONS = (CallAction.PRE_ACCEPT, CallAction.ACCEPT)

_UNCONFIRMED = {
    CallAction.CONNECT: "WhatsApp API did not confirm call initiation",
}


@dataclass
class CallActionResult:
    """Normalized outcome of a provider call action."""
    success: bool
    call_id: Optional[str] = None
    error: Optional[str] = None
    data: dict = field(default_factory=dict)
    call_id_generated: bool = False


def normalize_phone_number(number: str) -> str:
    """Reduce a phone number to the bare digits the provider expects.

    Examples:
        "+1 (555) 123-4567" → "15551234567"
        "15551234567" → "15551234567"
    """
    return re.sub(r"\D", "", number.strip())


def fallback_call_id() -> str:
    """Locally generated id used when the provider omits one on connect."""
    return f"outgoing_{int(time.time() * 1000)}"


class WhatsAppCallClient:
    """Sends call actions to the provider and normalizes the responses.

    Usage:
        client = WhatsAppCallClient(config)
        result = await client.initiate_call("15551234567", offer_sdp)
        if result.success:
            ...
        await client.aclose()
    """

    def __init__(self, config: BridgeConfig, http_client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.request_timeout)

    async def initiate_call(self, phone_number: str, sdp: str) -> CallActionResult:
        """Place an outbound call carrying the browser's SDP offer."""
        to = normalize_phone_number(phone_number)
        body = {
            "messaging_product": "whatsapp",
            "to": to,
            "action": CallAction.CONNECT.value,
            "session": {"sdp_type": "offer", "sdp": sdp},
        }
        logger.info("Provider: initiating call to %s (sdp_length=%d)", to, len(sdp))

        result = await self._post(body, CallAction.CONNECT)
        if not result.success:
            return result

        call_id = _extract_call_id(result.data)
        if call_id is None:
            call_id = fallback_call_id()
            result.call_id_generated = True
            logger.warning(
                "Provider: connect response carried no call id, using %s; "
                "webhook correlation may fail", call_id,
            )
        result.call_id = call_id
        logger.info("Provider: call to %s initiated (call_id=%s)", to, call_id)
        return result

    async def answer(self, call_id: str, sdp: str, action: CallAction) -> CallActionResult:
        """Send an SDP answer with a pre_accept or accept action."""
        action = CallAction(action)
        if action not in ANSWER_ACTIONS:
            raise ValueError(f"Not an answer action: {action.value}")
        body = {
            "messaging_product": "whatsapp",
            "call_id": call_id,
            "action": action.value,
            "session": {"sdp_type": "answer", "sdp": sdp},
        }
        result = await self._post(body, action)
        result.call_id = call_id
        return result

    async def reject(self, call_id: str) -> CallActionResult:
        """Reject a ringing call."""
        return await self._call_only(call_id, CallAction.REJECT)

    async def terminate(self, call_id: str) -> CallActionResult:
        """Hang up an established or ringing call."""
        return await self._call_only(call_id, CallAction.TERMINATE)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _call_only(self, call_id: str, action: CallAction) -> CallActionResult:
        body = {
            "messaging_product": "whatsapp",
            "call_id": call_id,
            "action": action.value,
        }
        result = await self._post(body, action)
        result.call_id = call_id
        return result

    async def _post(self, body: dict, action: CallAction) -> CallActionResult:
        headers = {
            "Authorization": f"Bearer {self._config.access_token}",
            "Content-Type": "application/json",
        }
        target = body.get("call_id") or body.get("to")
        try:
            response = await self._http.post(self._config.calls_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Provider: '%s' for %s failed: %s", action.value, target, e)
            return CallActionResult(success=False, error=str(e) or type(e).__name__)

        data = _json_body(response)

        if response.status_code >= 400:
            message = _error_message(data) or f"HTTP {response.status_code}"
            logger.error(
                "Provider: '%s' for %s rejected with HTTP %d: %s",
                action.value, target, response.status_code, data,
            )
            if response.status_code == 401:
                logger.error("Provider: 401 Unauthorized, check access_token and phone_number_id")
            return CallActionResult(success=False, error=message, data=data)

        if data.get("success") is True:
            logger.info("Provider: '%s' for %s succeeded", action.value, target)
            return CallActionResult(success=True, data=data)

        logger.warning("Provider: '%s' for %s was not successful: %s", action.value, target, data)
        message = _error_message(data) or _UNCONFIRMED.get(
            action, f"WhatsApp API did not confirm '{action.value}'"
        )
        return CallActionResult(success=False, error=message, data=data)


def _json_body(response: httpx.Response) -> dict:
    try:
        data: Any = response.json()
    except ValueError:
        return {"text": response.text}
    return data if isinstance(data, dict) else {"body": data}


def _error_message(data: dict) -> Optional[str]:
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return error
    return None


def _extract_call_id(data: dict) -> Optional[str]:
    if data.get("call_id"):
        return str(data["call_id"])
    # The Cloud API may also report created calls as a list of {"id": ...}
    calls = data.get("calls")
    if isinstance(calls, list) and calls and isinstance(calls[0], dict) and calls[0].get("id"):
        return str(calls[0]["id"])
    return None
