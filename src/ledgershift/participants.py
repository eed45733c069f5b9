"""
Participant addresses and the deduplicating participant set.

Addresses are 20-byte identity keys compared case-insensitively. Every
address entering ledgershift goes through normalize_address(), which
produces the canonical ``0x`` + 40 lowercase hex form, so two textual
encodings of one key collapse to a single entry.

Example:
    >>> participants = ParticipantSet()
    >>> participants.add("0xF39Fd6e51aad88F6F4ce6aB8827279cffFb92266")
    True
    >>> participants.add("0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266")
    False
    >>> len(participants)
    1
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from eth_utils import to_normalized_address

from ledgershift.exceptions import InvalidAddressError


def normalize_address(value: Any) -> str:
    """
    Normalize an address to its canonical lowercase hex form.

    Accepts checksummed or lowercase hex text (with or without the ``0x``
    prefix) and 20 raw bytes. Checksums are not enforced; equality is
    case-insensitive.

    Args:
        value: Address text or bytes

    Returns:
        ``0x`` followed by 40 lowercase hex digits

    Raises:
        InvalidAddressError: If the value is not a 20-byte address
    """
    if isinstance(value, str):
        value = value.strip()
        if not value.lower().startswith("0x"):
            value = f"0x{value}"
    elif not isinstance(value, (bytes, bytearray)):
        raise InvalidAddressError(value, "expected hex text or 20 bytes")
    elif len(value) != 20:
        raise InvalidAddressError(value, f"expected 20 bytes, got {len(value)}")

    try:
        return str(to_normalized_address(value))
    except (ValueError, TypeError) as e:
        raise InvalidAddressError(value, str(e)) from e


def is_address(value: Any) -> bool:
    """Return True if value normalizes to a participant address."""
    try:
        normalize_address(value)
    except InvalidAddressError:
        return False
    return True


class ParticipantSet:
    """
    Insertion-ordered set of normalized participant addresses.

    Membership uses normalized-key equality. Iteration yields addresses in
    discovery order, which BatchPlanner relies on for stable batches.
    Equality between two sets ignores order.
    """

    def __init__(self, addresses: Iterable[Any] | None = None) -> None:
        self._members: dict[str, None] = {}
        if addresses is not None:
            self.update(addresses)

    def add(self, address: Any) -> bool:
        """
        Add an address.

        Returns:
            True if the address was not already a member

        Raises:
            InvalidAddressError: If the address is malformed
        """
        key = normalize_address(address)
        if key in self._members:
            return False
        self._members[key] = None
        return True

    def update(self, addresses: Iterable[Any]) -> int:
        """Add many addresses, returning how many were new."""
        return sum(1 for address in addresses if self.add(address))

    def union(self, other: Iterable[Any]) -> ParticipantSet:
        """Return a new set with this set's members followed by other's."""
        result = ParticipantSet(self)
        result.update(other)
        return result

    def to_list(self) -> list[str]:
        return list(self._members)

    def __contains__(self, address: object) -> bool:
        try:
            return normalize_address(address) in self._members
        except InvalidAddressError:
            return False

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __bool__(self) -> bool:
        return bool(self._members)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParticipantSet):
            return NotImplemented
        return self._members.keys() == other._members.keys()

    def __repr__(self) -> str:
        return f"ParticipantSet({len(self)} participants)"


__all__ = [
    "ParticipantSet",
    "is_address",
    "normalize_address",
]
