"""
Ledger and service collaborators.

- LedgerClient / MigrationService: the interfaces the migration and
  authorization components depend on
- InMemoryLedger / InMemoryMigrationService: reference implementations
- EvmLedger / EvmMigrationService: web3 adapters (optional, ``evm`` extra)
"""

from ledgershift.ledger.interface import (
    EventFilter,
    LedgerClient,
    LedgerEvent,
    MigrationReceipt,
    MigrationResultEvent,
    MigrationService,
    ParticipantSnapshot,
    PrivilegedCallReceipt,
    ReceiptStatus,
)
from ledgershift.ledger.in_memory import InMemoryLedger, InMemoryMigrationService

# EVM adapters are optional - only import if web3 is available
try:
    from ledgershift.ledger.evm import EvmLedger, EvmMigrationService, load_abi  # noqa: F401

    EVM_AVAILABLE = True
except ImportError:
    EVM_AVAILABLE = False

__all__ = [
    "EVM_AVAILABLE",
    "EventFilter",
    "LedgerClient",
    "LedgerEvent",
    "MigrationReceipt",
    "MigrationResultEvent",
    "MigrationService",
    "ParticipantSnapshot",
    "PrivilegedCallReceipt",
    "ReceiptStatus",
    "InMemoryLedger",
    "InMemoryMigrationService",
]

if EVM_AVAILABLE:
    __all__.extend(["EvmLedger", "EvmMigrationService", "load_abi"])
