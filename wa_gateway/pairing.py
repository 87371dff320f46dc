"""Pairing challenge relay.

Only one operator watches the pairing flow at a time: the relay holds a
single observer slot and a newer attachment simply takes it over. Challenges
arriving while nobody is watching are dropped; the engine re-emits fresh
ones on its own cadence.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from collections.abc import Callable
from typing import Any, Protocol

import qrcode

_LOGGER = logging.getLogger(__name__)

ALREADY_LOGGED_IN = "Already logged in"


class PairingObserver(Protocol):
    """Push channel subscriber (aiohttp's WebSocketResponse satisfies this)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self) -> Any: ...


def render_qr_data_url(challenge: str) -> str:
    """Render a pairing challenge as a PNG QR code data URL."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(challenge)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class PairingRelay:
    """Deliver rendered pairing challenges to the attached observer."""

    def __init__(
        self,
        is_connected: Callable[[], bool],
        *,
        renderer: Callable[[str], str] = render_qr_data_url,
    ) -> None:
        self._is_connected = is_connected
        self._renderer = renderer
        self._observer: PairingObserver | None = None
        self._latest_challenge: str | None = None
        self._lock = asyncio.Lock()

    @property
    def observer(self) -> PairingObserver | None:
        return self._observer

    async def attach(self, observer: PairingObserver) -> bool:
        """Attach an observer, replacing the current one.

        Returns:
            False if the session is already authenticated; the observer is
            told so, closed, and never attached.
        """
        async with self._lock:
            if self._is_connected():
                _LOGGER.info("Observer attached while logged in, closing it")
                await self._notify_logged_in(observer)
                return False

            if self._observer is not None and self._observer is not observer:
                _LOGGER.debug("Replacing pairing observer")
            self._observer = observer
            _LOGGER.info("Pairing observer attached, waiting for challenge")
            return True

    async def detach(self, observer: PairingObserver) -> None:
        """Detach ``observer`` unless a newer one has already replaced it."""
        async with self._lock:
            if self._observer is observer:
                self._observer = None
                _LOGGER.debug("Pairing observer detached")

    def clear(self) -> None:
        """Forget any challenge still being rendered."""
        self._latest_challenge = None

    async def deliver(self, challenge: str) -> bool:
        """Render ``challenge`` and push it to the attached observer.

        Returns:
            True if the challenge reached an observer.
        """
        self._latest_challenge = challenge

        if self._observer is None:
            _LOGGER.debug("Pairing challenge dropped: no observer attached")
            return False

        data_url = await asyncio.to_thread(self._renderer, challenge)

        async with self._lock:
            if self._latest_challenge is not challenge:
                _LOGGER.debug("Pairing challenge superseded before delivery")
                return False
            if self._is_connected():
                _LOGGER.debug("Pairing challenge dropped: session connected")
                return False

            observer = self._observer
            if observer is None:
                return False

            try:
                await observer.send_json({"qrCode": data_url})
            except Exception as err:  # Observer transport failures vary by backend
                _LOGGER.warning("Failed to deliver pairing challenge: %s", err)
                self._observer = None
                return False

        _LOGGER.info("Pairing challenge delivered")
        return True

    @staticmethod
    async def _notify_logged_in(observer: PairingObserver) -> None:
        try:
            await observer.send_json({"status": ALREADY_LOGGED_IN})
            await observer.close()
        except Exception as err:  # Observer transport failures vary by backend
            _LOGGER.warning("Failed to notify observer: %s", err)
