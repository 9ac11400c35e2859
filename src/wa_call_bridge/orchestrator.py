"""Bridge orchestrator: the call state machine.

Owns the single CallSession and drives the peer engine, the provider client
and the browser signaling channels. Webhook events and browser events both
enter through the public handlers below, which run one at a time under a
single asyncio.Lock, so no two handlers ever interleave their mutations.

The media bridge itself runs as a background task owned by the session
(bridge_task, then accept_task). A session reset cancels both tasks and
closes both peers, so a bridge never completes against a call that has
already ended.

Bridge sequence once both offers and a browser channel are present:

   1. browser peer: collect inbound audio, relay local ICE candidates
   2. apply the browser offer
   3. provider peer: start the provider-track wait (provider_track_timeout)
   4. apply the provider offer
   5. forward browser audio → provider
   6. wait for the first provider audio track
   7. forward provider audio → browser
   8. browser answer → `browser-answer`
   9. provider answer with `a=setup:active`
  10. pre_accept; on success accept after accept_delay, then `start-browser-timer`
  11. clear both offers

Every abort path resets the session and broadcasts `webrtc-error`.
"""

import asyncio
import logging
from typing import Any, Optional

from wa_call_bridge import signaling as sig
from wa_call_bridge.base_peer_engine import BasePeerEngine
from wa_call_bridge.config import BridgeConfig
from wa_call_bridge.events import CallEvent, CallEventType
from wa_call_bridge.exceptions import (
    CallSessionBusyError,
    MediaNegotiationError,
    ProviderApiError,
)
from wa_call_bridge.provider_client import CallAction, WhatsAppCallClient
from wa_call_bridge.sdp import describe, force_active_setup_role
from wa_call_bridge.session import CallDirection, CallSession, OutboundStatus
from wa_call_bridge.signaling import SignalingChannel, SignalingHub

logger = logging.getLogger(__name__)

DEFAULT_CALLER_NAME = "Outgoing Call"

# Outcome event broadcast when a provider event ends the outbound call.
_OUTBOUND_OUTCOMES = {
    CallEventType.REJECT: sig.OUTGOING_CALL_REJECTED,
    CallEventType.TIMEOUT: sig.OUTGOING_CALL_TIMEOUT,
}


class BridgeOrchestrator:
    """Coordinates one call between the browser and the provider.

    Usage:
        orchestrator = BridgeOrchestrator(engine, client, hub, config)
        await orchestrator.request_outbound_call("15551234567")
        await orchestrator.dispatch_browser_event(channel, "browser-offer", sdp)
        await orchestrator.handle_call_event(event)
    """

    def __init__(
        self,
        engine: BasePeerEngine,
        client: WhatsAppCallClient,
        hub: SignalingHub,
        config: BridgeConfig,
    ):
        self._engine = engine
        self._client = client
        self._hub = hub
        self._config = config
        self._lock = asyncio.Lock()
        self.session = CallSession()

    # ------------------------------------------------------------------
    # Outbound call requests
    # ------------------------------------------------------------------

    async def request_outbound_call(self, phone_number: str, caller_name: Optional[str] = None) -> None:
        """Start an outbound call and ask the browsers for an SDP offer.

        Raises:
            CallSessionBusyError: If a call session is already active.
        """
        async with self._lock:
            session = self.session
            if session.is_active:
                raise CallSessionBusyError(session.call_id)

            session.direction = CallDirection.OUTBOUND
            session.phone_number = phone_number
            session.caller_name = caller_name or DEFAULT_CALLER_NAME
            session.transition(OutboundStatus.INITIATING)
            session.transition(OutboundStatus.WAITING_FOR_SDP)
            logger.info("Outbound call to %s requested, waiting for browser offer", phone_number)

            await self._hub.broadcast(sig.START_OUTGOING_CALL_WEBRTC, {
                "phoneNumber": phone_number,
                "callerName": session.caller_name,
            })

    # ------------------------------------------------------------------
    # Browser events
    # ------------------------------------------------------------------

    async def dispatch_browser_event(self, channel: SignalingChannel, event: str, data: Any) -> None:
        """Route a browser signaling event to its handler."""
        if event == sig.BROWSER_OFFER:
            await self.handle_browser_offer(channel, data)
        elif event == sig.BROWSER_CANDIDATE:
            await self.handle_browser_candidate(data)
        elif event == sig.REJECT_CALL:
            await self.handle_reject_call(data)
        elif event == sig.TERMINATE_CALL:
            await self.handle_terminate_call(data)
        elif event == sig.REJECT_OUTBOUND_CALL:
            await self.handle_reject_outbound_call()
        elif event == sig.TERMINATE_OUTBOUND_CALL:
            await self.handle_terminate_outbound_call()
        else:
            logger.warning("Unknown browser event from %s: %s", channel, event)

    async def handle_browser_offer(self, channel: SignalingChannel, sdp: Any) -> None:
        if not isinstance(sdp, str) or not sdp:
            logger.warning("Ignoring empty browser offer from %s", channel)
            return

        async with self._lock:
            session = self.session
            logger.info("Received SDP offer from browser %s (%s)", channel.channel_id, describe(sdp))
            session.browser_offer_sdp = sdp
            session.signaling = channel

            if session.is_outbound and session.status is OutboundStatus.WAITING_FOR_SDP:
                await self._place_outbound_call(session, sdp)
            else:
                self._attempt_bridge_locked()

    async def handle_browser_candidate(self, candidate: Any) -> None:
        peer = self.session.browser_peer
        if peer is None:
            logger.warning("Cannot add ICE candidate: browser peer connection not initialized.")
            return
        if not isinstance(candidate, dict):
            logger.warning("Ignoring malformed browser ICE candidate: %r", candidate)
            return
        try:
            await peer.add_ice_candidate(candidate)
        except Exception as e:
            logger.error("Failed to add ICE candidate from browser: %s", e)

    async def handle_reject_call(self, call_id: Any) -> None:
        """Browser declined a call by id."""
        await self._end_call_from_browser(call_id, CallAction.REJECT)

    async def handle_terminate_call(self, call_id: Any) -> None:
        """Browser hung up a call by id."""
        await self._end_call_from_browser(call_id, CallAction.TERMINATE)

    async def handle_reject_outbound_call(self) -> None:
        async with self._lock:
            session = self.session
            if not session.is_outbound:
                logger.warning("Ignoring outbound reject: no outbound call in progress")
                return
            call_id, phone_number = session.call_id, session.phone_number
            logger.info("Browser rejected outbound call %s", call_id or "-")
            if call_id:
                result = await self._client.reject(call_id)
                logger.info("Reject outbound call result: success=%s error=%s", result.success, result.error)
            await self._reset_session("outbound call rejected by browser")
            await self._hub.broadcast(sig.OUTGOING_CALL_REJECTED, {
                "callId": call_id,
                "phoneNumber": phone_number,
            })

    async def handle_terminate_outbound_call(self) -> None:
        async with self._lock:
            if not self.session.is_outbound:
                logger.warning("Ignoring outbound terminate: no outbound call in progress")
                return
            call_id = self.session.call_id
            logger.info("Browser terminated outbound call %s", call_id or "-")
            if call_id:
                result = await self._client.terminate(call_id)
                logger.info("Terminate outbound call result: success=%s error=%s", result.success, result.error)
            await self._reset_session("outbound call terminated by browser")
            await self._hub.broadcast(sig.CALL_ENDED)

    async def unbind_signaling(self, channel: SignalingChannel) -> None:
        """Forget a browser channel that disconnected.

        A call still being bridged to that browser cannot complete, so it is
        ended on the provider side and the session is reset.
        """
        async with self._lock:
            session = self.session
            if session.signaling is not channel:
                return
            logger.info("Bound browser %s disconnected", channel.channel_id)
            session.signaling = None

            accept_pending = session.accept_task is not None and not session.accept_task.done()
            if not (session.bridge_in_progress or accept_pending):
                return

            call_id = session.call_id
            if call_id:
                # An inbound call is still ringing until accept is sent
                if session.direction is CallDirection.INBOUND and session.accept_task is None:
                    result = await self._client.reject(call_id)
                else:
                    result = await self._client.terminate(call_id)
                if not result.success:
                    logger.warning("Could not end call %s: %s", call_id, result.error)
            await self._reset_session("browser disconnected during bridge")
            await self._hub.broadcast(sig.CALL_ENDED)

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    async def handle_call_event(self, event: CallEvent) -> None:
        """Apply a provider webhook call event to the session."""
        async with self._lock:
            event_type = event.event_type
            if event_type is CallEventType.CONNECT:
                await self._on_connect(event)
            elif event_type is not None:
                await self._on_call_finished(event, event_type)
            else:
                logger.info("Unhandled WhatsApp call event: %s (call_id=%s)", event.event, event.call_id)

    async def _on_connect(self, event: CallEvent) -> None:
        session = self.session

        if (
            session.is_outbound
            and session.call_id_provisional
            and session.status is OutboundStatus.RINGING
        ):
            logger.warning(
                "Adopting provider call id %s for outbound call recorded as %s",
                event.call_id, session.call_id,
            )
            session.call_id = event.call_id
            session.call_id_provisional = False

        if session.is_outbound_match(event.call_id):
            logger.info("Outgoing WhatsApp call answered by %s", event.caller_number)
            if session.status is OutboundStatus.RINGING:
                session.transition(OutboundStatus.CONNECTED)
            else:
                logger.info("Repeated connect for outbound call %s in status %s", event.call_id, session.status.value)
            session.provider_offer_sdp = event.sdp
            await self._hub.broadcast(sig.OUTGOING_CALL_CONNECTED, {
                "callId": event.call_id,
                "phoneNumber": event.caller_number,
                "callerName": event.caller_name,
            })
        elif session.is_active and session.call_id != event.call_id:
            logger.warning(
                "Declining call %s from %s: call session %s is already active",
                event.call_id, event.caller_number, session.call_id or "-",
            )
            result = await self._client.reject(event.call_id)
            if not result.success:
                logger.warning("Could not decline call %s: %s", event.call_id, result.error)
            return
        else:
            logger.info("Incoming WhatsApp call from %s (%s)", event.caller_name, event.caller_number)
            session.direction = CallDirection.INBOUND
            session.call_id = event.call_id
            session.caller_name = event.caller_name
            session.phone_number = event.caller_number
            session.provider_offer_sdp = event.sdp
            await self._hub.broadcast(sig.CALL_IS_COMING, {
                "callId": event.call_id,
                "callerName": event.caller_name,
                "callerNumber": event.caller_number,
            })

        if event.sdp is None:
            logger.warning("Connect event for %s carried no SDP offer", event.call_id)
        self._attempt_bridge_locked()

    async def _on_call_finished(self, event: CallEvent, event_type: CallEventType) -> None:
        session = self.session
        logger.info("WhatsApp call %s: %s", event.call_id, event_type.value)
        if event_type is CallEventType.TERMINATE and event.duration is not None and event.status:
            logger.info("Call duration: %ss | Status: %s", event.duration, event.status)

        if session.is_outbound_match(event.call_id):
            phone_number = session.phone_number
            await self._reset_session(f"provider {event_type.value}")
            outcome = _OUTBOUND_OUTCOMES.get(event_type)
            if outcome is not None:
                await self._hub.broadcast(outcome, {"callId": event.call_id, "phoneNumber": phone_number})
        elif session.direction is CallDirection.INBOUND and session.call_id == event.call_id:
            await self._reset_session(f"provider {event_type.value}")

        await self._hub.broadcast(sig.CALL_ENDED)

    # ------------------------------------------------------------------
    # Bridge
    # ------------------------------------------------------------------

    async def attempt_bridge(self) -> bool:
        """Start the media bridge if everything it needs is present.

        Safe to call any number of times: without both offers and a bound
        browser channel, or while a bridge is already running, it does nothing.

        Returns:
            True if a bridge task was started.
        """
        async with self._lock:
            return self._attempt_bridge_locked()

    def _attempt_bridge_locked(self) -> bool:
        session = self.session
        if not session.has_both_offers:
            logger.debug(
                "Bridge not ready: browser offer=%s, provider offer=%s",
                session.browser_offer_sdp is not None, session.provider_offer_sdp is not None,
            )
            return False
        if session.signaling is None or session.signaling.closed:
            logger.debug("Bridge not ready: no browser channel bound")
            return False
        if session.bridge_in_progress:
            logger.debug("Bridge already in progress for call %s", session.call_id)
            return False

        logger.info("Both offers present, bridging call %s", session.call_id)
        session.bridge_task = asyncio.create_task(self._run_bridge(session))
        return True

    async def _run_bridge(self, session: CallSession) -> None:
        try:
            provider_sdp = await self._negotiate(session)
            await self._pre_accept(session, provider_sdp)
        except asyncio.CancelledError:
            logger.info("Bridge for call %s cancelled", session.call_id)
            raise
        except (MediaNegotiationError, ProviderApiError) as e:
            logger.error("Bridge for call %s failed: %s", session.call_id, e)
            await self._abort(session, str(e))
        except Exception as e:
            logger.exception("Unexpected error while bridging call %s", session.call_id)
            await self._abort(session, f"WebRTC bridge failed: {e}")

    async def _negotiate(self, session: CallSession) -> str:
        """Steps 1-9: build both legs and return the provider answer SDP."""
        loop = asyncio.get_running_loop()
        ice_servers = self._config.ice_servers
        channel = session.signaling

        # --- Browser leg ---
        browser_peer = self._engine.create_peer_connection(ice_servers)
        session.browser_peer = browser_peer

        def on_browser_track(track: Any) -> None:
            if getattr(track, "kind", None) != "audio":
                return
            logger.info("Audio track received from browser.")
            session.browser_audio_sink.append(track)

        async def on_browser_candidate(candidate: dict) -> None:
            if channel is not None:
                await channel.emit(sig.BROWSER_CANDIDATE, candidate)

        browser_peer.on_track(on_browser_track)
        browser_peer.on_ice_candidate(on_browser_candidate)

        await browser_peer.set_remote_offer(session.browser_offer_sdp)
        logger.info("Browser offer SDP set as remote description.")

        # --- Provider leg ---
        provider_peer = self._engine.create_peer_connection(ice_servers)
        session.provider_peer = provider_peer

        provider_track: asyncio.Future = loop.create_future()
        deadline = loop.time() + self._config.provider_track_timeout

        def on_provider_track(track: Any) -> None:
            if getattr(track, "kind", None) != "audio":
                return
            logger.info("Audio track received from WhatsApp.")
            session.provider_audio_sink.append(track)
            if not provider_track.done():
                provider_track.set_result(track)

        provider_peer.on_track(on_provider_track)

        await provider_peer.set_remote_offer(session.provider_offer_sdp)
        logger.info("WhatsApp offer SDP set as remote description.")

        for track in list(session.browser_audio_sink):
            provider_peer.add_track(track)
        logger.info("Forwarded %d browser audio track(s) to WhatsApp.", len(session.browser_audio_sink))

        try:
            track = await asyncio.wait_for(provider_track, max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            raise MediaNegotiationError(
                f"Timed out waiting for WhatsApp audio track "
                f"after {self._config.provider_track_timeout:g}s"
            ) from None

        browser_peer.add_track(track)
        logger.info("Forwarded WhatsApp audio to browser.")

        # --- Answers ---
        browser_answer = await browser_peer.create_answer()
        if channel is not None:
            await channel.emit(sig.BROWSER_ANSWER, browser_answer)
        logger.info("Browser answer SDP created and sent.")

        provider_answer = await provider_peer.create_answer()
        logger.info("WhatsApp answer SDP prepared (%s).", describe(provider_answer))
        return force_active_setup_role(provider_answer)

    async def _pre_accept(self, session: CallSession, sdp: str) -> None:
        """Step 10-11: pre_accept now, accept after the configured delay."""
        result = await self._client.answer(session.call_id, sdp, CallAction.PRE_ACCEPT)
        if not result.success:
            raise ProviderApiError(f"Pre-accept failed: {result.error}")

        async with self._lock:
            if self.session is not session:
                return
            session.browser_offer_sdp = None
            session.provider_offer_sdp = None
            session.accept_task = asyncio.create_task(self._accept_after_delay(session, sdp))

    async def _accept_after_delay(self, session: CallSession, sdp: str) -> None:
        try:
            await asyncio.sleep(self._config.accept_delay)
            result = await self._client.answer(session.call_id, sdp, CallAction.ACCEPT)
        except asyncio.CancelledError:
            logger.info("Pending accept for call %s cancelled", session.call_id)
            raise

        if not result.success:
            logger.error("Accept for call %s failed: %s", session.call_id, result.error)
            await self._abort(session, f"Accept failed: {result.error}")
            return

        session.bridged = True
        logger.info("Call %s accepted, media bridge is live", session.call_id)
        if session.signaling is not None:
            await session.signaling.emit(sig.START_BROWSER_TIMER)

    async def _abort(self, session: CallSession, reason: str) -> None:
        async with self._lock:
            if self.session is not session:
                return
            await self._reset_session(reason)
            await self._hub.broadcast(sig.WEBRTC_ERROR, {"error": reason})

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _place_outbound_call(self, session: CallSession, sdp: str) -> None:
        logger.info("Processing SDP offer for outgoing call to %s", session.phone_number)
        result = await self._client.initiate_call(session.phone_number, sdp)

        if not result.success:
            logger.error("Failed to initiate WhatsApp call: %s", result.error)
            await self._reset_session("outbound call initiation failed")
            await self._hub.broadcast(sig.WEBRTC_ERROR, {"error": result.error})
            return

        session.call_id = result.call_id
        session.call_id_provisional = result.call_id_generated
        session.transition(OutboundStatus.RINGING)
        await self._hub.broadcast(sig.OUTGOING_CALL_INITIATED, {
            "callId": result.call_id,
            "phoneNumber": session.phone_number,
            "callerName": session.caller_name,
        })

    async def _end_call_from_browser(self, call_id: Any, action: CallAction) -> None:
        if not call_id or not isinstance(call_id, str):
            logger.warning("Browser sent '%s' without a call id", action.value)
            return

        async with self._lock:
            if action is CallAction.REJECT:
                result = await self._client.reject(call_id)
            else:
                result = await self._client.terminate(call_id)
            logger.info(
                "%s call %s result: success=%s error=%s",
                action.value.capitalize(), call_id, result.success, result.error,
            )
            if self.session.call_id == call_id:
                await self._reset_session(f"browser sent {action.value}")

    async def _reset_session(self, reason: str) -> None:
        """Discard the session: cancel its tasks, close its peers, start fresh.

        Must be called with the lock held. The browser channel binding is kept.
        """
        old = self.session
        current = asyncio.current_task()
        for task in (old.bridge_task, old.accept_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        for peer in (old.browser_peer, old.provider_peer):
            if peer is None:
                continue
            try:
                await peer.close()
            except Exception as e:
                logger.warning("Failed to close peer connection: %s", e)

        old.end()
        self.session = CallSession(signaling=old.signaling)
        logger.info("Call session %s reset (%s)", old.call_id or "-", reason)

    async def shutdown(self) -> None:
        """Tear down any call in progress."""
        async with self._lock:
            if self.session.is_active or self.session.bridge_in_progress:
                await self._reset_session("shutdown")
