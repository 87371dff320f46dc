"""Test PairingRelay observer handling and QR rendering."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from wa_gateway.pairing import ALREADY_LOGGED_IN, PairingRelay, render_qr_data_url


def make_observer() -> MagicMock:
    observer = MagicMock()
    observer.send_json = AsyncMock()
    observer.close = AsyncMock()
    return observer


class ConnectedFlag:
    """Mutable stand-in for the session's logged-in check."""

    def __init__(self, value: bool = False) -> None:
        self.value = value

    def __call__(self) -> bool:
        return self.value


@pytest.fixture
def connected() -> ConnectedFlag:
    return ConnectedFlag()


@pytest.fixture
def relay(connected: ConnectedFlag) -> PairingRelay:
    return PairingRelay(connected, renderer=lambda challenge: f"data:{challenge}")


class TestRenderQrDataUrl:
    """Tests for render_qr_data_url()."""

    def test_renders_png_data_url(self):
        """Test challenge renders to a base64 PNG data URL."""
        url = render_qr_data_url("2@abcdef,ghijkl,mnopqr")

        prefix = "data:image/png;base64,"
        assert url.startswith(prefix)
        png = base64.b64decode(url[len(prefix) :])
        assert png.startswith(b"\x89PNG\r\n\x1a\n")


class TestPairingRelayAttach:
    """Tests for PairingRelay.attach() / detach()."""

    async def test_attach_while_unauthenticated(self, relay: PairingRelay):
        """Test observer is stored while pairing is possible."""
        observer = make_observer()

        assert await relay.attach(observer) is True
        assert relay.observer is observer
        observer.send_json.assert_not_awaited()

    async def test_attach_replaces_previous_observer(self, relay: PairingRelay):
        """Test a newer observer takes over without closing the old one."""
        first, second = make_observer(), make_observer()

        await relay.attach(first)
        await relay.attach(second)

        assert relay.observer is second
        first.close.assert_not_awaited()

    async def test_attach_while_connected(
        self, relay: PairingRelay, connected: ConnectedFlag
    ):
        """Test logged-in notification and closure when already connected."""
        connected.value = True
        observer = make_observer()

        assert await relay.attach(observer) is False

        observer.send_json.assert_awaited_once_with({"status": ALREADY_LOGGED_IN})
        observer.close.assert_awaited_once()
        assert relay.observer is None

    async def test_attach_while_connected_never_gets_challenge(
        self, relay: PairingRelay, connected: ConnectedFlag
    ):
        """Test a rejected observer receives nothing afterwards."""
        connected.value = True
        observer = make_observer()
        await relay.attach(observer)

        connected.value = False
        assert await relay.deliver("2@late") is False

        assert observer.send_json.await_count == 1

    async def test_attach_notification_failure_is_logged(
        self, relay: PairingRelay, connected: ConnectedFlag
    ):
        """Test a dead observer does not break attach."""
        connected.value = True
        observer = make_observer()
        observer.send_json.side_effect = ConnectionResetError("gone")

        assert await relay.attach(observer) is False

    async def test_detach_current(self, relay: PairingRelay):
        """Test detaching the current observer clears the slot."""
        observer = make_observer()
        await relay.attach(observer)

        await relay.detach(observer)

        assert relay.observer is None

    async def test_stale_detach_keeps_newer_observer(self, relay: PairingRelay):
        """Test a late detach from a replaced observer is ignored."""
        old, new = make_observer(), make_observer()
        await relay.attach(old)
        await relay.attach(new)

        await relay.detach(old)

        assert relay.observer is new


class TestPairingRelayDeliver:
    """Tests for PairingRelay.deliver()."""

    async def test_deliver_to_observer(self, relay: PairingRelay):
        """Test rendered challenge is pushed as qrCode."""
        observer = make_observer()
        await relay.attach(observer)

        assert await relay.deliver("2@abc") is True

        observer.send_json.assert_awaited_once_with({"qrCode": "data:2@abc"})

    async def test_deliver_without_observer(self, connected: ConnectedFlag):
        """Test challenge is dropped silently with nobody watching."""
        renderer = MagicMock(return_value="data:x")
        relay = PairingRelay(connected, renderer=renderer)

        assert await relay.deliver("2@abc") is False

        renderer.assert_not_called()

    async def test_deliver_when_connected(
        self, relay: PairingRelay, connected: ConnectedFlag
    ):
        """Test challenge is dropped once the session is authenticated."""
        observer = make_observer()
        await relay.attach(observer)
        connected.value = True

        assert await relay.deliver("2@abc") is False

        observer.send_json.assert_not_awaited()

    async def test_deliver_each_new_challenge(self, relay: PairingRelay):
        """Test every new challenge is pushed."""
        observer = make_observer()
        await relay.attach(observer)

        await relay.deliver("2@one")
        await relay.deliver("2@two")

        assert [c.args[0] for c in observer.send_json.await_args_list] == [
            {"qrCode": "data:2@one"},
            {"qrCode": "data:2@two"},
        ]

    async def test_cleared_during_render_is_dropped(self, connected: ConnectedFlag):
        """Test a challenge cleared while rendering is not sent."""
        relay: PairingRelay

        def renderer(challenge: str) -> str:
            relay.clear()
            return f"data:{challenge}"

        relay = PairingRelay(connected, renderer=renderer)
        observer = make_observer()
        await relay.attach(observer)

        assert await relay.deliver("2@abc") is False

        observer.send_json.assert_not_awaited()

    async def test_send_failure_detaches_observer(self, relay: PairingRelay):
        """Test a failing observer is dropped from the slot."""
        observer = make_observer()
        observer.send_json.side_effect = ConnectionResetError("closed")
        await relay.attach(observer)

        assert await relay.deliver("2@abc") is False

        assert relay.observer is None
