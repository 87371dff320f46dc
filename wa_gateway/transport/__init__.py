"""Transport layer for the WhatsApp gateway.

This package contains all IO and wire handling for the bridge engine.

Components:
- ws_client: Bridge socket connection and message iteration
- bridge: Protocol engine speaking to the WhatsApp Web bridge
"""

from .bridge import BridgeEngine, BridgeHandle
from .ws_client import (
    BridgeWsClient,
    BridgeWsMessage,
    BridgeWsMessageType,
    connect_websocket,
)

__all__ = [
    "BridgeEngine",
    "BridgeHandle",
    "BridgeWsClient",
    "BridgeWsMessage",
    "BridgeWsMessageType",
    "connect_websocket",
]
