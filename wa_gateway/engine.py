"""Protocol engine interface.

The session manager only ever talks to the messaging network through
these abstractions. A concrete engine opens a connection and hands back an
``EngineHandle``; the handle exposes send/logout and an async stream of
``EngineEvent`` values that the session manager consumes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

UNAUTHORIZED_STATUS_CODE = 401


class DisconnectReason(Enum):
    """Why a connection ended."""

    UNAUTHORIZED = "unauthorized"
    RECOVERABLE = "recoverable"

    @classmethod
    def from_status_code(cls, status_code: int | None) -> DisconnectReason:
        """Classify a close status code.

        Only 401 means the credentials were revoked; everything else,
        including a missing code, is treated as transient.
        """
        if status_code == UNAUTHORIZED_STATUS_CODE:
            return cls.UNAUTHORIZED
        return cls.RECOVERABLE


class EngineEventType(Enum):
    """Lifecycle event kinds emitted by an engine handle."""

    OPEN = "open"
    CLOSE = "close"
    PAIRING_CHALLENGE = "pairing_challenge"
    CREDENTIALS_UPDATE = "credentials_update"


@dataclass(frozen=True)
class EngineEvent:
    """Single event from an engine handle's event stream."""

    type: EngineEventType
    status_code: int | None = None
    challenge: str | None = None
    credentials: dict[str, Any] = field(default_factory=lambda: {})

    @classmethod
    def open(cls) -> EngineEvent:
        return cls(EngineEventType.OPEN)

    @classmethod
    def close(cls, status_code: int | None = None) -> EngineEvent:
        return cls(EngineEventType.CLOSE, status_code=status_code)

    @classmethod
    def pairing_challenge(cls, challenge: str) -> EngineEvent:
        return cls(EngineEventType.PAIRING_CHALLENGE, challenge=challenge)

    @classmethod
    def credentials_update(cls, credentials: dict[str, Any]) -> EngineEvent:
        return cls(EngineEventType.CREDENTIALS_UPDATE, credentials=credentials)

    @property
    def disconnect_reason(self) -> DisconnectReason:
        return DisconnectReason.from_status_code(self.status_code)


class EngineHandle(ABC):
    """Live connection returned by ``ProtocolEngine.connect``."""

    @abstractmethod
    async def send(self, recipient: str, payload: dict[str, Any]) -> None:
        """Deliver a message payload to a recipient address."""

    @abstractmethod
    async def logout(self) -> None:
        """Invalidate the remote session."""

    @abstractmethod
    async def close(self) -> None:
        """Drop the connection without invalidating the remote session."""

    @abstractmethod
    def events(self) -> AsyncIterator[EngineEvent]:
        """Iterate lifecycle events until the connection ends.

        The stream must end with a CLOSE event when the connection drops.
        """


class ProtocolEngine(ABC):
    """Factory for engine handles."""

    @abstractmethod
    async def connect(self, credentials: dict[str, Any]) -> EngineHandle:
        """Open a new connection using the given (possibly empty) credentials."""
