"""Exception hierarchy for wa-call-bridge."""


class CallBridgeError(Exception):
    """Base exception for all call bridge errors."""
    pass


class ConfigError(CallBridgeError):
    """Error loading or parsing bridge configuration."""
    pass


class ProviderApiError(CallBridgeError):
    """The provider's calling API returned an error or could not be reached."""
    pass


class MediaNegotiationError(CallBridgeError):
    """The media bridge could not be negotiated (e.g., no provider audio track)."""
    pass


class CallSessionBusyError(CallBridgeError):
    """A call session is already active; a second call cannot start."""

    def __init__(self, call_id: str | None = None):
        self.call_id = call_id
        super().__init__(f"A call session is already active (call_id={call_id})")


class InvalidTransitionError(CallBridgeError):
    """An outbound call state transition not allowed by the state table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid outbound call transition: {current} -> {target}")


class EngineNotAvailableError(CallBridgeError):
    """The requested peer engine is unknown or its dependencies are missing."""
    pass
