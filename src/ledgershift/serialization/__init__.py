"""
Serialization utilities for ledgershift.

Example:
    >>> from ledgershift.serialization import json_dumps
    >>> json_dumps({"total_users": 120})
    '{"total_users": 120}'
"""

from ledgershift.serialization.json import (
    LedgerShiftJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "LedgerShiftJSONEncoder",
    "json_dumps",
    "json_loads",
]
