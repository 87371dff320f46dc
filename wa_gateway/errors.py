"""Error types for the WhatsApp gateway.

Two families live here: transport errors raised by engine adapters while
talking to the bridge, and gateway errors raised by the session manager
for the HTTP layer to translate into responses.
"""

from __future__ import annotations


class EngineClientError(Exception):
    """Base error for protocol engine client failures."""


class EngineTimeout(EngineClientError):
    """Timeout while communicating with the engine."""


class EngineConnectionError(EngineClientError):
    """Network connection to the engine failed."""


class EngineHandshakeError(EngineClientError):
    """WebSocket handshake with the engine failed."""


class EngineResponseError(EngineClientError):
    """Engine rejected a request."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status


class GatewayError(Exception):
    """Base error for session manager operations."""


class NotConnected(GatewayError):
    """Operation requires an active session."""


class AlreadyConnected(GatewayError):
    """Connect requested while the session is already authenticated."""


class NoActiveSession(GatewayError):
    """Logout requested with nothing to tear down."""


class EngineInitError(GatewayError):
    """Engine failed to initialize a connection."""


class DeliveryFailed(GatewayError):
    """Engine accepted the send but transmission failed."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Delivery failed: {cause}")
        self.cause = cause


class LogoutFailed(GatewayError):
    """Engine could not invalidate the remote session."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Logout failed: {cause}")
        self.cause = cause
