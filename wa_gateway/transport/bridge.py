"""Protocol engine backed by a WhatsApp Web bridge process.

The bridge runs the actual WhatsApp Web client and speaks the JSON frames
described in ``wa_gateway.protocol`` over a single WebSocket. Each
``connect`` opens a fresh socket, so every handle maps to exactly one
bridge session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..engine import EngineEvent, EngineHandle, ProtocolEngine
from ..errors import (
    EngineClientError,
    EngineConnectionError,
    EngineResponseError,
    EngineTimeout,
)
from ..protocol import (
    build_hello,
    build_logout,
    build_send,
    parse_status_code,
)
from .ws_client import BridgeWsClient, BridgeWsMessageType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 30.0


class BridgeHandle(EngineHandle):
    """One live bridge session.

    A reader task owns the socket's inbound side: it resolves acks for
    pending requests and queues lifecycle events for ``events()``.
    """

    def __init__(
        self,
        client: BridgeWsClient,
        *,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        self._client = client
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[EngineEvent | None] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[None]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._finished = False

    def start_reader(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    # -------------------------------------------------------------------------
    # EngineHandle
    # -------------------------------------------------------------------------

    async def send(self, recipient: str, payload: dict[str, Any]) -> None:
        await self._request(build_send(recipient=recipient, payload=payload), "Send")

    async def logout(self) -> None:
        await self._request(build_logout(), "Logout")

    async def close(self) -> None:
        await self._client.close()
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._finish(close_event=None)

    async def events(self) -> AsyncIterator[EngineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _request(self, frame: dict[str, Any], what: str) -> None:
        """Send a frame and wait for the bridge's ack."""
        if self._finished:
            raise EngineConnectionError("Bridge session is closed")

        msg_id: str = frame["id"]
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._client.send_json(frame)
            await asyncio.wait_for(future, timeout=self._send_timeout)
        except TimeoutError as err:
            raise EngineTimeout(f"{what} request timed out") from err
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        close_event: EngineEvent | None = None
        try:
            async for msg in self._client:
                if msg.type is BridgeWsMessageType.TEXT:
                    try:
                        frame = BridgeWsClient.decode_json(msg)
                    except EngineClientError as err:
                        _LOGGER.warning("Invalid bridge frame: %s", err)
                        continue
                    close_event = self._dispatch(frame)
                    if close_event is not None:
                        break

                elif msg.type is BridgeWsMessageType.CLOSED:
                    _LOGGER.info("Bridge closed the connection")
                    break

                elif msg.type is BridgeWsMessageType.ERROR:
                    _LOGGER.error("Bridge WebSocket error")
                    break
        except EngineClientError as err:
            _LOGGER.warning("Bridge client error: %s", err)
        finally:
            self._finish(close_event=close_event)

    def _dispatch(self, frame: dict[str, Any]) -> EngineEvent | None:
        """Handle one inbound frame; returns the close event if it ends the session."""
        msg_type = frame["type"]
        body: dict[str, Any] = frame["body"]

        if msg_type == "connection":
            connection = body.get("connection")
            if connection == "open":
                self._queue.put_nowait(EngineEvent.open())
            elif connection == "close":
                return EngineEvent.close(parse_status_code(body.get("statusCode")))
            else:
                _LOGGER.debug("Connection update: %s", connection)
        elif msg_type == "qr":
            challenge = body.get("qr")
            if isinstance(challenge, str) and challenge:
                self._queue.put_nowait(EngineEvent.pairing_challenge(challenge))
        elif msg_type == "creds":
            creds = body.get("creds")
            if isinstance(creds, dict) and creds:
                self._queue.put_nowait(EngineEvent.credentials_update(creds))
        elif msg_type == "ack":
            self._resolve_ack(frame.get("id"), body)
        elif msg_type == "error":
            _LOGGER.error("Bridge error: %s", body.get("error"))
        else:
            _LOGGER.debug("Unknown bridge frame type: %s", msg_type)
        return None

    def _resolve_ack(self, msg_id: Any, body: dict[str, Any]) -> None:
        future = self._pending.get(msg_id) if isinstance(msg_id, str) else None
        if future is None or future.done():
            _LOGGER.debug("Ack for unknown request %s", msg_id)
            return

        if body.get("ok", True):
            future.set_result(None)
        else:
            future.set_exception(
                EngineResponseError(
                    parse_status_code(body.get("status")),
                    str(body.get("error") or "Bridge rejected request"),
                )
            )

    def _finish(self, *, close_event: EngineEvent | None) -> None:
        """End the session: fail pending requests and terminate the event stream."""
        if self._finished:
            return
        self._finished = True

        for future in self._pending.values():
            if not future.done():
                future.set_exception(EngineConnectionError("Bridge connection closed"))
        self._pending.clear()

        self._queue.put_nowait(close_event or EngineEvent.close())
        self._queue.put_nowait(None)


class BridgeEngine(ProtocolEngine):
    """Open bridge sessions over WebSocket.

    Usage:
        engine = BridgeEngine("ws://127.0.0.1:3001/ws", token="secret")
        handle = await engine.connect(credentials)
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        connect_timeout: float = 15.0,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        ping_interval: int = 20,
    ) -> None:
        self.url = url
        self._token = token
        self._connect_timeout = connect_timeout
        self._send_timeout = send_timeout
        self._ping_interval = ping_interval

    async def connect(self, credentials: dict[str, Any]) -> BridgeHandle:
        _LOGGER.info("Connecting to WhatsApp bridge at %s", self.url)

        client = BridgeWsClient()
        await client.connect(
            self.url,
            ping_interval=self._ping_interval,
            timeout=self._connect_timeout,
        )

        try:
            await client.send_json(
                build_hello(credentials=credentials, token=self._token)
            )
        except EngineClientError:
            await client.close()
            raise

        handle = BridgeHandle(client, send_timeout=self._send_timeout)
        handle.start_reader()
        _LOGGER.debug("Bridge session opened")
        return handle
