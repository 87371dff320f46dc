"""WebSocket client for the WhatsApp bridge."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    EngineClientError,
    EngineConnectionError,
    EngineHandshakeError,
    EngineTimeout,
)
from ..protocol import parse_frame

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)

_BRIDGE_SCHEMES = frozenset({"ws", "wss"})


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open the bridge socket.

    Args:
        url: Bridge URL (ws:// or wss://)
        ping_interval: Seconds between keepalive pings, None to disable
        timeout: Seconds to wait for the opening handshake

    Raises:
        EngineHandshakeError: Bad URL or rejected upgrade
        EngineTimeout: Handshake did not finish in time
        EngineConnectionError: Network failure
    """
    if urlsplit(url).scheme not in _BRIDGE_SCHEMES:
        raise EngineHandshakeError(f"Unsupported bridge URL: {url}")

    _LOGGER.debug("Connecting to bridge at %s", url)
    try:
        return await asyncio.wait_for(
            connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise EngineTimeout("Bridge connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise EngineHandshakeError("Bridge handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise EngineConnectionError("Bridge connection failed") from err


class BridgeWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class BridgeWsMessage:
    """Normalized WebSocket message payload."""

    type: BridgeWsMessageType
    data: str | None = None


class BridgeWsClient:
    """Text-frame client for the bridge socket.

    Binary frames are ignored. Iteration always ends with a CLOSED or
    ERROR message so readers can tell a drop from a clean shutdown.
    """

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int = 20,
        timeout: float = 15.0,
    ) -> None:
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Serialize and send one frame."""
        if self._ws is None:
            raise EngineConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosed, WebSocketException) as err:
            raise EngineConnectionError("Bridge connection lost") from err

    def __aiter__(self) -> AsyncIterator[BridgeWsMessage]:
        if self._ws is None:
            raise EngineConnectionError("WebSocket is not connected")
        return self._iter_messages(self._ws)

    async def _iter_messages(
        self, ws: ClientConnection
    ) -> AsyncIterator[BridgeWsMessage]:
        try:
            async for msg in ws:
                if isinstance(msg, bytes):
                    _LOGGER.debug("Skipping %d-byte binary frame", len(msg))
                    continue
                yield BridgeWsMessage(BridgeWsMessageType.TEXT, msg)
        except ConnectionClosed as err:
            _LOGGER.debug("Bridge socket closed: %s", err)
            yield BridgeWsMessage(type=BridgeWsMessageType.CLOSED)
        except Exception as err:
            _LOGGER.warning("Bridge socket error: %s", err)
            yield BridgeWsMessage(type=BridgeWsMessageType.ERROR)
        else:
            # Iterator exhaustion is a clean close from the peer
            yield BridgeWsMessage(type=BridgeWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: BridgeWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into a bridge frame."""
        if message.type is not BridgeWsMessageType.TEXT:
            raise EngineClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise EngineClientError("Message data is not a string")
        try:
            return parse_frame(message.data)
        except ValueError as err:
            raise EngineClientError(f"Invalid bridge frame: {err}") from err
