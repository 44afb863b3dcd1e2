"""Body codec: JSON in, bytes out."""
from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

from topic_client.app.domain.errors import MessageDecodeError, MessageEncodeError


def decode_body(body: bytes) -> Any:
    try:
        return json.loads(body.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageDecodeError(str(e)) from e


def encode_message(message: Any) -> bytes:
    """Encode an outbound payload.

    bytes pass through, str is UTF-8 encoded, pydantic models are dumped as
    JSON and anything else goes through json.dumps.
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    if isinstance(message, str):
        return message.encode()
    if isinstance(message, BaseModel):
        return message.model_dump_json().encode()
    try:
        return json.dumps(message).encode()
    except (TypeError, ValueError) as e:
        raise MessageEncodeError(f"cannot encode message of type {type(message).__name__}: {e}") from e
