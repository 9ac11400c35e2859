"""Application assembly: wires config, engine, provider client and routes."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from wa_call_bridge import __version__
from wa_call_bridge.base_peer_engine import BasePeerEngine
from wa_call_bridge.config import BridgeConfig
from wa_call_bridge.engines import get_engine
from wa_call_bridge.orchestrator import BridgeOrchestrator
from wa_call_bridge.provider_client import WhatsAppCallClient
from wa_call_bridge.signaling import SignalingHub
from wa_call_bridge.webhook import BridgeRoutes

logger = logging.getLogger(__name__)


def create_app(
    config: BridgeConfig,
    engine: Optional[BasePeerEngine] = None,
    client: Optional[WhatsAppCallClient] = None,
) -> FastAPI:
    """Build the FastAPI application for one bridge instance.

    Args:
        config: Bridge configuration.
        engine: Peer engine; defaults to the one named by config.peer_engine.
        client: Provider client; defaults to a WhatsAppCallClient for config.
    """
    engine = engine or get_engine(config.peer_engine)
    client = client or WhatsAppCallClient(config)
    hub = SignalingHub()
    orchestrator = BridgeOrchestrator(engine, client, hub, config)

    if not config.access_token or not config.phone_number_id:
        logger.warning("access_token or phone_number_id not configured; provider calls will fail")
    if not config.verify_token:
        logger.warning("verify_token not configured; webhook verification will always fail")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Call bridge started: engine=%s, calls_url=%s", engine.engine_name, config.calls_url)
        yield
        await orchestrator.shutdown()
        await client.aclose()
        logger.info("Call bridge stopped")

    app = FastAPI(title="WhatsApp Call Bridge", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.hub = hub

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "engine": engine.engine_name,
            "browsers": len(hub.channels),
            "session": orchestrator.session.summary(),
        }

    BridgeRoutes(orchestrator, hub, verify_token=config.verify_token).register(app)
    return app
