"""CLI entry point for the call bridge server.

Usage:
    wa-call-bridge                          # Start with defaults / environment
    wa-call-bridge --config path/to/config  # Custom config path
    wa-call-bridge --port 8080              # Custom port
"""

import logging
import signal

import click
import uvicorn

from wa_call_bridge.config import DEFAULT_CONFIG_PATH, BridgeConfig
from wa_call_bridge.server import create_app


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@click.command()
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_PATH, help="Path to bridge config YAML")
@click.option("--port", "-p", default=None, type=int, help="Port for the FastAPI server")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--engine", default=None, help="Peer engine name (default from config: aiortc)")
@click.option("--log-level", default=None, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
def main(config_path: str, port: int | None, host: str | None, engine: str | None, log_level: str | None):
    """Start the WhatsApp call bridge server."""
    config = BridgeConfig.from_yaml(config_path)
    if port is not None:
        config.server_port = port
    if host is not None:
        config.server_host = host
    if engine is not None:
        config.peer_engine = engine
    if log_level is not None:
        config.log_level = log_level

    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.info("Loaded config from %s", config_path)

    app = create_app(config)

    # Graceful shutdown
    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        raise SystemExit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info("Starting call bridge on %s:%d", config.server_host, config.server_port)
    uvicorn.run(app, host=config.server_host, port=config.server_port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
