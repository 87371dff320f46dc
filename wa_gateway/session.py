"""Session lifecycle manager for the WhatsApp gateway.

This module owns the single engine connection and handles:
- Connection establishment and credential loading
- Pairing challenge hand-off to the relay
- Disconnect classification
- Reconnect after a fixed delay
- Explicit logout and teardown

State, engine handle and logout flag are only touched while holding the
session lock. Every background task (handle listener, reconnect timer)
carries the generation it was created for; work from a superseded
generation is dropped when it reaches the lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from .credentials import CredentialStore
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
    EngineInitError,
    LogoutFailed,
    NoActiveSession,
    NotConnected,
)
from .pairing import PairingRelay

_LOGGER = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0
HANDLE_CLOSE_TIMEOUT = 2.0


class SessionState(Enum):
    """Lifecycle state of the gateway session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset(
        {
            SessionState.CONNECTED,
            SessionState.AWAITING_PAIRING,
            SessionState.LOGGED_OUT,
            SessionState.DISCONNECTED,
        }
    ),
    SessionState.AWAITING_PAIRING: frozenset(
        {
            SessionState.CONNECTED,
            SessionState.CONNECTING,
            SessionState.LOGGED_OUT,
            SessionState.DISCONNECTED,
        }
    ),
    SessionState.CONNECTED: frozenset(
        {
            SessionState.CONNECTING,
            SessionState.LOGGED_OUT,
            SessionState.DISCONNECTED,
        }
    ),
    SessionState.LOGGED_OUT: frozenset(
        {SessionState.DISCONNECTED, SessionState.CONNECTING}
    ),
}


class ConnectOutcome(Enum):
    """Result of a connect request."""

    INITIALIZING = "initializing"
    REINITIALIZING = "reinitializing"


class SessionManager:
    """Own the gateway's single engine session.

    Usage:
        manager = SessionManager(engine, FileCredentialStore("auth"))
        await manager.start()
        await manager.pairing.attach(websocket)
        await manager.send("15551234567@s.whatsapp.net", "hi")
        await manager.logout()
    """

    def __init__(
        self,
        engine: ProtocolEngine,
        store: CredentialStore,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
    ) -> None:
        """Initialize the manager.

        Args:
            engine: Protocol engine used to open connections
            store: Credential persistence backend
            reconnect_delay: Seconds to wait before reconnecting after a
                recoverable close
        """
        self._engine = engine
        self._store = store
        self._reconnect_delay = reconnect_delay

        # Guarded by _lock
        self._state = SessionState.DISCONNECTED
        self._handle: EngineHandle | None = None
        self._logout_requested = False
        self._generation = 0

        self._lock = asyncio.Lock()
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._state_callback: Callable[[SessionState, SessionState], None] | None = (
            None
        )

        self.pairing = PairingRelay(lambda: self.is_logged_in)

    # -------------------------------------------------------------------------
    # Public API: Status
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def is_logged_in(self) -> bool:
        """True when the session is authenticated and usable for sending."""
        return self._state is SessionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None

    def status(self) -> SessionState:
        return self._state

    def on_state_changed(
        self, callback: Callable[[SessionState, SessionState], None]
    ) -> None:
        """Register callback for state changes.

        Callback receives (previous, current).
        """
        self._state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def start(self) -> bool:
        """Open a new engine connection unless one is already in progress.

        Returns:
            True if a new connection was opened, False if one already exists

        Raises:
            EngineInitError: The engine could not open a connection; the
                session is left DISCONNECTED.
        """
        return await self._start()

    async def request_connect(self) -> ConnectOutcome:
        """Start (or restart after logout) the session state machine.

        Raises:
            AlreadyConnected: The session is already authenticated.
            EngineInitError: The engine could not open a connection.
        """
        async with self._lock:
            if self._state is SessionState.CONNECTED:
                raise AlreadyConnected("Already logged in")

            restarting = self._state is SessionState.LOGGED_OUT
            if restarting:
                _LOGGER.info("Restarting session after logout")
                self._logout_requested = False
                self._set_state(SessionState.DISCONNECTED)

        await self._start()
        if restarting:
            return ConnectOutcome.REINITIALIZING
        return ConnectOutcome.INITIALIZING

    async def logout(self) -> None:
        """Log out remotely, clear credentials and stop reconnecting.

        Local teardown happens under the lock; the remote request runs after
        it is released, and its failure is reported afterwards.

        Raises:
            NoActiveSession: Nothing to log out from.
            LogoutFailed: The engine failed to invalidate the remote session.
        """
        async with self._lock:
            handle = self._handle
            if handle is None and self._reconnect_task is None:
                raise NoActiveSession("No active session found")

            _LOGGER.info("Logging out")
            self._logout_requested = True
            self._generation += 1
            self._cancel_reconnect()
            listen_task = self._detach_listener()
            self._handle = None
            self._clear_credentials()
            self._set_state(SessionState.LOGGED_OUT)

        await self._await_cancelled(listen_task)
        if handle is None:
            return

        logout_error: Exception | None = None
        try:
            await handle.logout()
        except (EngineClientError, OSError) as err:
            _LOGGER.error("Engine logout failed: %s", err)
            logout_error = err
        await self._close_handle(handle)

        if logout_error is not None:
            raise LogoutFailed(logout_error) from logout_error

    async def close(self) -> None:
        """Shut down without logging out; credentials are kept."""
        _LOGGER.info("Closing session")

        async with self._lock:
            self._generation += 1
            self._cancel_reconnect()
            listen_task = self._detach_listener()
            handle = self._handle
            self._handle = None
            if handle is not None:
                await self._close_handle(handle)
            if self._state is not SessionState.LOGGED_OUT:
                self._set_state(SessionState.DISCONNECTED)

        await self._await_cancelled(listen_task)

    # -------------------------------------------------------------------------
    # Public API: Messaging
    # -------------------------------------------------------------------------

    async def send(self, recipient: str, message: str) -> None:
        """Send a text message through the active session.

        Raises:
            NotConnected: The session is not authenticated.
            DeliveryFailed: The engine failed to deliver the message.
        """
        async with self._lock:
            handle = self._handle
            if self._state is not SessionState.CONNECTED or handle is None:
                raise NotConnected("WhatsApp not connected")

        try:
            await handle.send(recipient, {"text": message})
        except (EngineClientError, OSError) as err:
            _LOGGER.warning("Failed to send message to %s: %s", recipient, err)
            raise DeliveryFailed(err) from err

        _LOGGER.debug("Message sent to %s", recipient)

    # -------------------------------------------------------------------------
    # Event Dispatch
    # -------------------------------------------------------------------------

    async def handle_event(
        self, event: EngineEvent, *, generation: int | None = None
    ) -> None:
        """Apply one engine lifecycle event.

        Args:
            event: Event from the engine handle
            generation: Generation of the handle that produced the event;
                events from a superseded handle are ignored. None means the
                current handle.
        """
        challenge: str | None = None

        async with self._lock:
            if generation is not None and generation != self._generation:
                _LOGGER.debug(
                    "Ignoring %s from stale connection (gen %d, current %d)",
                    event.type.value,
                    generation,
                    self._generation,
                )
                return

            if event.type is EngineEventType.OPEN:
                self._on_open()
            elif event.type is EngineEventType.CLOSE:
                await self._on_close(event)
            elif event.type is EngineEventType.PAIRING_CHALLENGE:
                challenge = self._on_pairing_challenge(event)
            elif event.type is EngineEventType.CREDENTIALS_UPDATE:
                self._on_credentials_update(event.credentials)

        if challenge is not None:
            try:
                await self.pairing.deliver(challenge)
            except Exception as err:
                _LOGGER.exception("Pairing relay error: %s", err)

    def _on_open(self) -> None:
        self._set_state(SessionState.CONNECTED)
        self.pairing.clear()
        self._logout_requested = False
        _LOGGER.info("WhatsApp connected")

    async def _on_close(self, event: EngineEvent) -> None:
        reason = event.disconnect_reason
        handle = self._handle
        self._handle = None
        self._generation += 1
        self._detach_listener()

        if handle is not None:
            await self._close_handle(handle)

        if self._logout_requested:
            _LOGGER.info("Connection closed during logout")
            self._set_state(SessionState.LOGGED_OUT)
        elif reason is DisconnectReason.UNAUTHORIZED:
            _LOGGER.warning(
                "Connection closed: credentials rejected (status %s)",
                event.status_code,
            )
            self._clear_credentials()
            self._set_state(SessionState.LOGGED_OUT)
        else:
            _LOGGER.info("Connection closed (status %s)", event.status_code)
            self._set_state(SessionState.CONNECTING)
            self._schedule_reconnect()

    def _on_pairing_challenge(self, event: EngineEvent) -> str | None:
        if self._state is SessionState.CONNECTED:
            _LOGGER.debug("Ignoring pairing challenge: already connected")
            return None
        if not event.challenge:
            _LOGGER.warning("Ignoring empty pairing challenge")
            return None
        self._set_state(SessionState.AWAITING_PAIRING)
        return event.challenge

    def _on_credentials_update(self, update: dict[str, Any]) -> None:
        try:
            self._store.save(update)
        except OSError as err:
            _LOGGER.error("Failed to persist credentials: %s", err)

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        """Update state and notify callback."""
        previous = self._state
        if previous is state:
            return
        if state not in ALLOWED_TRANSITIONS[previous]:
            _LOGGER.error(
                "Unexpected transition %s → %s", previous.value, state.value
            )
        _LOGGER.debug("State: %s → %s", previous.value, state.value)
        self._state = state
        if self._state_callback:
            try:
                self._state_callback(previous, state)
            except Exception as err:
                _LOGGER.exception("State callback error: %s", err)

    async def _start(self, *, generation: int | None = None) -> bool:
        async with self._lock:
            if generation is not None:
                # Fired from the reconnect timer
                self._reconnect_task = None
                if generation != self._generation or self._logout_requested:
                    _LOGGER.debug("Stale reconnect ignored")
                    return False
            elif self._reconnect_task is not None:
                self._cancel_reconnect()

            if self._handle is not None:
                _LOGGER.info("Connection attempt already in progress")
                return False

            if self._state is SessionState.LOGGED_OUT:
                self._logout_requested = False

            self._generation += 1
            current = self._generation
            self._set_state(SessionState.CONNECTING)

            try:
                credentials = self._store.load()
                _LOGGER.info(
                    "Connecting (%s credentials)",
                    "stored" if credentials else "new",
                )
                handle = await self._engine.connect(credentials)
            except (EngineClientError, OSError) as err:
                _LOGGER.error("Error starting WhatsApp connection: %s", err)
                self._set_state(SessionState.DISCONNECTED)
                raise EngineInitError(str(err)) from err

            self._handle = handle
            self._listen_task = asyncio.create_task(self._listen(handle, current))
            return True

    def _schedule_reconnect(self) -> None:
        """Schedule a reconnect for the current generation."""
        if self._logout_requested or self._reconnect_task is not None:
            return

        _LOGGER.info("Reconnecting in %.1fs", self._reconnect_delay)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after_delay(self._generation)
        )

    async def _reconnect_after_delay(self, generation: int) -> None:
        """Reconnect after delay."""
        try:
            await asyncio.sleep(self._reconnect_delay)
            await self._start(generation=generation)
        except asyncio.CancelledError:
            _LOGGER.debug("Reconnect cancelled")
        except EngineInitError as err:
            _LOGGER.warning("Reconnect failed: %s", err)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _detach_listener(self) -> asyncio.Task[None] | None:
        task = self._listen_task
        self._listen_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            return task
        return None

    async def _close_handle(self, handle: EngineHandle) -> None:
        try:
            await asyncio.wait_for(handle.close(), timeout=HANDLE_CLOSE_TIMEOUT)
        except TimeoutError:
            _LOGGER.warning("Engine handle close timed out")
        except (EngineClientError, OSError) as err:
            _LOGGER.debug("Engine handle close failed: %s", err)

    def _clear_credentials(self) -> None:
        try:
            self._store.clear()
        except OSError as err:
            _LOGGER.error("Failed to clear credentials: %s", err)

    @staticmethod
    async def _await_cancelled(task: asyncio.Task[None] | None) -> None:
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -------------------------------------------------------------------------
    # Internal: Event Listener
    # -------------------------------------------------------------------------

    async def _listen(self, handle: EngineHandle, generation: int) -> None:
        """Feed the handle's events into the dispatcher."""
        closed = False
        try:
            async for event in handle.events():
                await self.handle_event(event, generation=generation)
                if event.type is EngineEventType.CLOSE:
                    closed = True
                    break
        except asyncio.CancelledError:
            _LOGGER.debug("Listener cancelled (gen %d)", generation)
            raise
        except EngineClientError as err:
            _LOGGER.warning("Engine error: %s", err)
        except Exception as err:
            _LOGGER.exception("Unexpected listener error: %s", err)

        if not closed:
            await self.handle_event(EngineEvent.close(), generation=generation)
