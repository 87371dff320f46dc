"""Frame helpers for the WhatsApp bridge protocol.

Every frame exchanged with the bridge is a JSON envelope:

    {"v": 1, "type": "...", "id": "...", "ts": <epoch ms>, "body": {...}}

Gateway -> bridge: hello, send, logout.
Bridge -> gateway: connection, qr, creds, ack, error.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any

PROTOCOL_VERSION = 1
JID_SUFFIX = "@s.whatsapp.net"


def build_frame(
    *,
    msg_type: str,
    body: dict[str, Any],
    msg_id: str | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build an envelope for a gateway -> bridge frame.

    Args:
        msg_type: Frame type (e.g., "send", "logout").
        body: JSON-serializable body.
        msg_id: Optional caller-supplied identifier. Generated when omitted.
        timestamp_ms: Optional epoch milliseconds override.
    """
    return {
        "v": PROTOCOL_VERSION,
        "type": msg_type,
        "id": msg_id or str(uuid.uuid4()),
        "ts": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        "body": body,
    }


def build_hello(
    *, credentials: dict[str, Any], token: str | None = None
) -> dict[str, Any]:
    """Construct the hello frame opening a bridge session."""
    body: dict[str, Any] = {"credentials": credentials}
    if token:
        body["token"] = token
    return build_frame(msg_type="hello", body=body)


def build_send(
    *, recipient: str, payload: dict[str, Any], msg_id: str | None = None
) -> dict[str, Any]:
    """Construct a send frame; the bridge answers with an ack of the same id."""
    return build_frame(
        msg_type="send", msg_id=msg_id, body={"to": recipient, "content": payload}
    )


def build_logout(*, msg_id: str | None = None) -> dict[str, Any]:
    """Construct a logout frame; the bridge answers with an ack of the same id."""
    return build_frame(msg_type="logout", msg_id=msg_id, body={})


def parse_frame(raw: str) -> dict[str, Any]:
    """Decode and validate a bridge -> gateway frame.

    Raises:
        ValueError: If the payload is not a JSON object with a string type
            and an object body.
    """
    frame = json.loads(raw)
    if not isinstance(frame, dict):
        raise ValueError("Frame must be a JSON object")

    msg_type = frame.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ValueError("Frame type must be a non-empty string")

    body = frame.setdefault("body", {})
    if not isinstance(body, dict):
        raise ValueError(f"Frame body must be an object, got {type(body).__name__}")

    return frame


def parse_status_code(value: Any) -> int | None:
    """Normalize a close status code; bools and garbage map to None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def to_jid(phone_number: str) -> str:
    """Turn a bare phone number into a WhatsApp user JID.

    Addresses that already carry a domain part are returned unchanged.
    """
    number = phone_number.strip()
    if "@" in number:
        return number
    return number.lstrip("+") + JID_SUFFIX
