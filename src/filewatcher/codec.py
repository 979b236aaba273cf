"""Wire encoding of change events: JSON, deflate, base64."""

import base64
import binascii
import json
import zlib
from typing import List, Sequence

from .exceptions import MalformedMessageError
from .models import ChangeEvent


def encode_events(events: Sequence[ChangeEvent]) -> str:
    """Encode events as base64 of the deflated compact JSON array."""
    payload = json.dumps([e.to_dict() for e in events], separators=(",", ":"))
    compressed = zlib.compress(payload.encode("utf-8"), zlib.Z_BEST_SPEED)
    return base64.b64encode(compressed).decode("ascii")


def decode_events(msg: str) -> List[ChangeEvent]:
    """
    Decode the output of :func:`encode_events`.
    
    Raises:
        MalformedMessageError: If any layer of the encoding is invalid
    """
    try:
        compressed = base64.b64decode(msg, validate=True)
        payload = zlib.decompress(compressed).decode("utf-8")
        records = json.loads(payload)
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError, TypeError) as e:
        raise MalformedMessageError(f"Cannot decode change payload: {e}")

    if not isinstance(records, list):
        raise MalformedMessageError("Change payload must be a JSON array")
    try:
        return [ChangeEvent.from_dict(r) for r in records]
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise MalformedMessageError(f"Invalid change event record: {e}")
