"""Single-session WhatsApp gateway."""

__version__ = "0.1.0"

from .credentials import CredentialStore, FileCredentialStore
from .engine import (
    DisconnectReason,
    EngineEvent,
    EngineEventType,
    EngineHandle,
    ProtocolEngine,
)
from .errors import (
    AlreadyConnected,
    DeliveryFailed,
    EngineClientError,
    EngineConnectionError,
    EngineHandshakeError,
    EngineInitError,
    EngineResponseError,
    EngineTimeout,
    GatewayError,
    LogoutFailed,
    NoActiveSession,
    NotConnected,
)
from .pairing import PairingRelay, render_qr_data_url
from .protocol import build_frame, parse_frame, to_jid
from .session import ConnectOutcome, SessionManager, SessionState

__all__ = [
    "AlreadyConnected",
    "ConnectOutcome",
    "CredentialStore",
    "DeliveryFailed",
    "DisconnectReason",
    "EngineClientError",
    "EngineConnectionError",
    "EngineEvent",
    "EngineEventType",
    "EngineHandle",
    "EngineHandshakeError",
    "EngineInitError",
    "EngineResponseError",
    "EngineTimeout",
    "FileCredentialStore",
    "GatewayError",
    "LogoutFailed",
    "NoActiveSession",
    "NotConnected",
    "PairingRelay",
    "ProtocolEngine",
    "SessionManager",
    "SessionState",
    "__version__",
    "build_frame",
    "parse_frame",
    "render_qr_data_url",
    "to_jid",
]
