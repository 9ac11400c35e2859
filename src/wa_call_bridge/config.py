"""Configuration loader for wa-call-bridge."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from wa_call_bridge.exceptions import ConfigError

DEFAULT_CONFIG_PATH = "~/.wa_call_bridge/config.yaml"


@dataclass
class IceServerConfig:
    """A STUN/TURN server handed to every peer connection."""
    urls: str
    username: str = ""
    credential: str = ""


def _default_ice_servers() -> list[IceServerConfig]:
    return [IceServerConfig(urls="stun:stun.l.google.com:19302")]


@dataclass
class BridgeConfig:
    """Top-level configuration for the call bridge."""
    phone_number_id: str = ""
    access_token: str = ""
    verify_token: str = ""
    graph_api_version: str = "v18.0"
    api_base_url: str = "https://graph.facebook.com"
    ice_servers: list[IceServerConfig] = field(default_factory=_default_ice_servers)
    server_host: str = "0.0.0.0"
    server_port: int = 19000
    log_level: str = "INFO"
    peer_engine: str = "aiortc"
    provider_track_timeout: float = 10.0     # seconds to wait for provider audio
    accept_delay: float = 1.0                # seconds between pre_accept and accept
    request_timeout: float = 30.0            # provider REST timeout

    @property
    def calls_url(self) -> str:
        """Provider endpoint for every call action."""
        base = self.api_base_url.rstrip("/")
        return f"{base}/{self.graph_api_version}/{self.phone_number_id}/calls"

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Build a config from environment variables only."""
        return cls(
            phone_number_id=os.environ.get("PHONE_NUMBER_ID", ""),
            access_token=os.environ.get("ACCESS_TOKEN", ""),
            verify_token=os.environ.get("VERIFY_TOKEN", ""),
            server_port=int(os.environ.get("PORT", 19000)),
        )

    @classmethod
    def from_yaml(cls, path: str = DEFAULT_CONFIG_PATH) -> "BridgeConfig":
        """Load config from YAML file, with environment variable expansion.

        Environment variables in the format ${VAR_NAME} are expanded. When the
        file does not exist the config falls back to from_env().
        """
        config_path = Path(path).expanduser()
        if not config_path.exists():
            return cls.from_env()

        with open(config_path) as f:
            raw = f.read()

        # Expand ${ENV_VAR} references
        def expand_env(match):
            var_name = match.group(1)
            return os.environ.get(var_name, match.group(0))

        raw = re.sub(r'\$\{(\w+)\}', expand_env, raw)
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must be a mapping")

        provider = data.get("provider", {}) or {}
        timeouts = data.get("timeouts", {}) or {}

        ice_servers = []
        for entry in data.get("ice_servers", []) or []:
            if isinstance(entry, str):
                ice_servers.append(IceServerConfig(urls=entry))
            elif isinstance(entry, dict) and entry.get("urls"):
                ice_servers.append(IceServerConfig(
                    urls=entry["urls"],
                    username=entry.get("username", ""),
                    credential=entry.get("credential", ""),
                ))
            else:
                raise ConfigError(f"Invalid ICE server entry: {entry!r}")

        return cls(
            phone_number_id=str(provider.get("phone_number_id", os.environ.get("PHONE_NUMBER_ID", ""))),
            access_token=provider.get("access_token", os.environ.get("ACCESS_TOKEN", "")),
            verify_token=provider.get("verify_token", os.environ.get("VERIFY_TOKEN", "")),
            graph_api_version=provider.get("graph_api_version", "v18.0"),
            api_base_url=provider.get("api_base_url", "https://graph.facebook.com"),
            ice_servers=ice_servers or _default_ice_servers(),
            server_host=data.get("server_host", "0.0.0.0"),
            server_port=int(data.get("server_port", 19000)),
            log_level=data.get("log_level", "INFO"),
            peer_engine=data.get("peer_engine", "aiortc"),
            provider_track_timeout=float(timeouts.get("provider_track", 10.0)),
            accept_delay=float(timeouts.get("accept_delay", 1.0)),
            request_timeout=float(timeouts.get("request", 30.0)),
        )
