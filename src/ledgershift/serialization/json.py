"""
JSON serialization for ledgershift reports and run records.

Reports carry UUIDs, timestamps, enums and raw byte strings (selectors,
signatures, transaction hashes), none of which the standard encoder
handles.

Example:
    >>> from ledgershift.serialization import json_dumps, json_loads
    >>> from uuid import uuid4
    >>>
    >>> json_str = json_dumps({"run_id": uuid4(), "selector": b"\\xb6\\xb5_%"})
    >>> parsed = json_loads(json_str)
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class LedgerShiftJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for UUID, datetime, Enum and bytes values.

    - UUID objects: string representation
    - datetime objects: ISO 8601 string
    - Enum members: their value
    - bytes: ``0x``-prefixed lowercase hex
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (bytes, bytearray)):
            return "0x" + bytes(obj).hex()
        return super().default(obj)


def json_dumps(obj: Any, *, indent: int | None = None) -> str:
    """
    Serialize object to a JSON string.

    Keys are sorted so identical reports serialize identically.

    Args:
        obj: Object to serialize
        indent: Optional indentation for human-readable output

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=LedgerShiftJSONEncoder, sort_keys=True, indent=indent)


def json_loads(s: str | bytes) -> Any:
    """
    Deserialize a JSON string.

    UUID, datetime and hex strings are NOT converted back to their
    original types.
    """
    return json.loads(s)


__all__ = [
    "LedgerShiftJSONEncoder",
    "json_dumps",
    "json_loads",
]
