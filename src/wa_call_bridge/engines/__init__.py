"""Peer engine registry.

Engines are lazily imported so the media library is only loaded when used.
"""

from typing import TYPE_CHECKING

from wa_call_bridge.exceptions import EngineNotAvailableError

if TYPE_CHECKING:
    from wa_call_bridge.base_peer_engine import BasePeerEngine

_ENGINES: dict[str, str] = {
    "aiortc": "wa_call_bridge.engines.aiortc_engine:AiortcPeerEngine",
}


def get_engine(name: str) -> "BasePeerEngine":
    """Get a peer engine instance by name.

    Args:
        name: Engine name (currently only 'aiortc').

    Returns:
        A ready-to-use engine instance.

    Raises:
        EngineNotAvailableError: If the engine is unknown or its media
            library is not installed.
    """
    name = name.lower()
    if name not in _ENGINES:
        raise EngineNotAvailableError(
            f"Unknown peer engine: {name!r}. Available: {list(_ENGINES.keys())}"
        )

    module_path, class_name = _ENGINES[name].rsplit(":", 1)
    import importlib
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise EngineNotAvailableError(f"Peer engine {name!r} is not installed: {e}") from e
    cls = getattr(module, class_name)
    return cls()
