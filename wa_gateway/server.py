"""HTTP and push-channel surface of the gateway.

Single aiohttp server handling:
- POST /send-message - Send a text message
- GET /status - Logged-in flag
- GET /health - Detailed session state
- GET /connect - Start or restart the session
- POST /logout - Log out and drop credentials
- GET / (WebSocket upgrade) - Pairing QR push channel
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import WSMsgType, web

from .errors import (
    AlreadyConnected,
    DeliveryFailed,
    EngineInitError,
    LogoutFailed,
    NoActiveSession,
    NotConnected,
)
from .protocol import to_jid
from .session import ConnectOutcome, SessionManager

_LOGGER = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _cors_middleware(origin: str) -> Any:
    @web.middleware
    async def cors(request: web.Request, handler: Handler) -> web.StreamResponse:
        response = await handler(request)
        if not response.prepared:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    return cors


def _error_detail(err: BaseException) -> str:
    return str(err) or type(err).__name__


class GatewayServer:
    """aiohttp application wired to a session manager."""

    def __init__(
        self,
        session: SessionManager,
        *,
        cors_origin: str = "*",
        start_session: bool = True,
    ) -> None:
        """Build the application.

        Args:
            session: Session manager backing every endpoint
            cors_origin: Access-Control-Allow-Origin value
            start_session: Open the engine connection when the app starts
        """
        self.session = session
        self._start_session = start_session
        self.app = web.Application(middlewares=[_cors_middleware(cors_origin)])
        self._setup_routes()
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)
        self._runner: web.AppRunner | None = None

    def _setup_routes(self) -> None:
        self.app.router.add_post("/send-message", self._handle_send_message)
        self.app.router.add_get("/status", self._handle_status)
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/connect", self._handle_connect)
        self.app.router.add_post("/logout", self._handle_logout)
        self.app.router.add_get("/", self._handle_push)
        self.app.router.add_get("/ws", self._handle_push)
        self.app.router.add_route("OPTIONS", "/{tail:.*}", self._handle_preflight)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _on_startup(self, app: web.Application) -> None:
        if not self._start_session:
            return
        try:
            await self.session.start()
        except EngineInitError as err:
            # Server stays up; /connect can retry later
            _LOGGER.error("Initial connection failed: %s", err)

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.session.close()

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start serving on host:port."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        _LOGGER.info("Server running on http://%s:%d", host, port)
        return self._runner

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    # =========================================================================
    # HTTP handlers
    # =========================================================================

    async def _handle_preflight(self, request: web.Request) -> web.Response:
        return web.Response(status=204)

    async def _handle_send_message(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            body = None

        phone_number = body.get("phoneNumber") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None
        if not isinstance(phone_number, (str, int)) or not isinstance(message, str):
            return web.json_response(
                {"message": "phoneNumber and message are required"}, status=400
            )

        try:
            await self.session.send(to_jid(str(phone_number)), message)
        except NotConnected:
            return web.json_response({"message": "WhatsApp not connected"}, status=500)
        except DeliveryFailed as err:
            return web.json_response(
                {"message": "Failed to send message", "error": _error_detail(err.cause)},
                status=500,
            )

        return web.json_response({"status": "Message sent successfully"})

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response({"isLoggedIn": self.session.is_logged_in})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "state": self.session.state.value,
                "isLoggedIn": self.session.is_logged_in,
                "reconnectPending": self.session.reconnect_pending,
            }
        )

    async def _handle_connect(self, request: web.Request) -> web.Response:
        try:
            outcome = await self.session.request_connect()
        except AlreadyConnected:
            return web.json_response({"message": "Already logged in"}, status=400)
        except EngineInitError as err:
            return web.json_response(
                {
                    "message": "Failed to initialize WhatsApp connection",
                    "error": _error_detail(err),
                },
                status=500,
            )

        if outcome is ConnectOutcome.REINITIALIZING:
            return web.json_response({"message": "Reinitializing..."})
        return web.json_response({"message": "Initializing..."})

    async def _handle_logout(self, request: web.Request) -> web.Response:
        try:
            await self.session.logout()
        except NoActiveSession:
            return web.json_response({"message": "No active session found"}, status=400)
        except LogoutFailed as err:
            return web.json_response(
                {"message": "Failed to log out", "error": _error_detail(err.cause)},
                status=500,
            )

        return web.json_response({"message": "Logged out successfully"})

    # =========================================================================
    # Push channel
    # =========================================================================

    async def _handle_push(self, request: web.Request) -> web.StreamResponse:
        """Pairing QR channel; one observer at a time."""
        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return web.json_response(
                {"message": "WebSocket upgrade required"}, status=426
            )
        await ws.prepare(request)

        relay = self.session.pairing
        if not await relay.attach(ws):
            return ws

        _LOGGER.info("WhatsApp not logged in, sending QR code")
        try:
            async for msg in ws:
                if msg.type is WSMsgType.ERROR:
                    _LOGGER.warning("Push channel error: %s", ws.exception())
                    break
        finally:
            await relay.detach(ws)

        return ws
