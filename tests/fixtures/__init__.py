"""
Shared test fixtures for the ledgershift tests.

This module provides reusable test helpers including:
- Development keys, addresses and the default test domain
- A controllable clock for deadline tests
- Participant address factories and ledger population

Usage:
    from tests.fixtures import (
        AUTHORITY_KEY,
        CALLER_ADDRESS,
        FrozenClock,
        make_domain,
        participant_address,
        populate_ledger,
    )
"""

from tests.fixtures.accounts import (
    AUTHORITY_ADDRESS,
    AUTHORITY_KEY,
    CALLER_ADDRESS,
    CALLER_KEY,
    CONTRACT_ADDRESS,
    DEPOSIT_OPERATION,
    FIXED_NOW,
    OTHER_CONTRACT_ADDRESS,
    PREMIUM_OPERATION,
    FrozenClock,
    make_domain,
)
from tests.fixtures.participants import (
    participant_address,
    participant_addresses,
    populate_ledger,
)

__all__ = [
    # Accounts
    "AUTHORITY_ADDRESS",
    "AUTHORITY_KEY",
    "CALLER_ADDRESS",
    "CALLER_KEY",
    "CONTRACT_ADDRESS",
    "OTHER_CONTRACT_ADDRESS",
    "DEPOSIT_OPERATION",
    "PREMIUM_OPERATION",
    "FIXED_NOW",
    "FrozenClock",
    "make_domain",
    # Participants
    "participant_address",
    "participant_addresses",
    "populate_ledger",
]
