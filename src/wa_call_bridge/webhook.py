"""FastAPI routes for the provider webhook, outbound requests and browser signaling.

Registers four routes:
  GET  /webhook        — webhook subscription verification (hub.* query params)
  POST /webhook        — provider call events (connect/terminate/reject/timeout)
  POST /initiate-call  — request an outbound call {phoneNumber, callerName?}
  WS   /signaling      — browser signaling channel

Provider webhook deliveries are always acknowledged with 200 so the provider
does not redeliver; only an unexpected fault answers 500.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from wa_call_bridge.events import parse_call_event
from wa_call_bridge.exceptions import CallSessionBusyError
from wa_call_bridge.orchestrator import BridgeOrchestrator
from wa_call_bridge.signaling import SignalingChannel, SignalingHub

logger = logging.getLogger(__name__)

SUBSCRIBE_MODE = "subscribe"


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> tuple[int, str]:
    """Decide the answer to a webhook verification request.

    Returns:
        (status_code, body): 200 with the challenge echoed verbatim when the
        mode is 'subscribe' and the token matches; 403 on mismatch; 400 when
        mode or token is missing.
    """
    if not mode or not token:
        logger.warning("Webhook verification failed - missing parameters")
        return 400, ""
    if mode == SUBSCRIBE_MODE and expected_token and token == expected_token:
        logger.info("Webhook verified successfully")
        return 200, challenge or ""
    logger.warning("Webhook verification failed - invalid token")
    return 403, ""


class BridgeRoutes:
    """Registers the bridge's HTTP and WebSocket routes on a FastAPI app.

    Usage:
        app = FastAPI()
        routes = BridgeRoutes(orchestrator, hub, verify_token="secret")
        routes.register(app)
    """

    def __init__(self, orchestrator: BridgeOrchestrator, hub: SignalingHub, verify_token: str):
        self.orchestrator = orchestrator
        self.hub = hub
        self.verify_token = verify_token

    def register(self, app: FastAPI) -> None:
        """Register all bridge routes on a FastAPI application."""

        @app.get("/webhook")
        async def verify_webhook(
            mode: Optional[str] = Query(None, alias="hub.mode"),
            token: Optional[str] = Query(None, alias="hub.verify_token"),
            challenge: Optional[str] = Query(None, alias="hub.challenge"),
        ):
            """Answer the provider's subscription handshake."""
            logger.info("Webhook verification request received: mode=%s", mode)
            status, body = verify_subscription(mode, token, challenge, self.verify_token)
            return PlainTextResponse(content=body, status_code=status)

        @app.post("/webhook")
        async def receive_webhook(request: Request):
            """Handle a provider call event delivery."""
            try:
                try:
                    payload = await request.json()
                except ValueError:
                    logger.warning("Webhook body is not valid JSON; acknowledging")
                    return Response(status_code=200)

                logger.debug("Received webhook POST: %s", payload)
                event = parse_call_event(payload)
                if event is None:
                    logger.warning("Received invalid or incomplete call event.")
                    return Response(status_code=200)

                await self.orchestrator.handle_call_event(event)
                return Response(status_code=200)
            except Exception:
                logger.exception("Error processing webhook POST")
                return Response(status_code=500)

        @app.post("/initiate-call")
        async def initiate_call(request: Request):
            """Accept an outbound call request for processing."""
            try:
                body = await request.json()
            except ValueError:
                body = None
            if not isinstance(body, dict):
                body = {}

            phone_number = body.get("phoneNumber")
            caller_name = body.get("callerName")
            logger.info("Received outgoing call request: phone=%s caller=%s", phone_number, caller_name)

            if not phone_number or not isinstance(phone_number, str):
                return JSONResponse(
                    {"success": False, "error": "Phone number is required"}, status_code=400,
                )

            try:
                await self.orchestrator.request_outbound_call(phone_number, caller_name)
            except CallSessionBusyError as e:
                logger.warning("Outgoing call to %s refused: %s", phone_number, e)
                return JSONResponse(
                    {"success": False, "error": "Another call is already in progress"},
                    status_code=409,
                )

            return JSONResponse({
                "success": True,
                "message": f"Initiating call to {phone_number}. Waiting for WebRTC setup...",
            })

        @app.websocket("/signaling")
        async def signaling(websocket: WebSocket):
            """Browser signaling channel."""
            await websocket.accept()
            channel = SignalingChannel(websocket)
            self.hub.add(channel)

            try:
                while True:
                    event, data = await channel.receive()
                    if event is None:
                        continue
                    await self.orchestrator.dispatch_browser_event(channel, event, data)
            except WebSocketDisconnect:
                logger.info("Browser %s WebSocket disconnected", channel.channel_id)
            except Exception:
                logger.exception("Unexpected error on browser channel %s", channel.channel_id)
            finally:
                channel.mark_closed()
                self.hub.remove(channel)
                await self.orchestrator.unbind_signaling(channel)
