"""
Base64 ``data:`` URL helpers for images stored on invoices (signature, QR).
"""

import base64
import binascii

from app.exceptions import RenderError


def to_data_url(png: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(png).decode('ascii')}"


def decode_data_url(value: str) -> bytes:
    """Raw bytes of a base64 ``data:`` URL (a bare base64 string is accepted).

    Raises:
        RenderError: if the payload is empty or not valid base64.
    """
    if not value:
        raise RenderError("Embedded image payload is empty")
    encoded = value.split(",", 1)[1] if value.startswith("data:") and "," in value else value
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RenderError("Embedded image payload is not valid base64") from e
    if not raw:
        raise RenderError("Embedded image payload is empty")
    return raw
