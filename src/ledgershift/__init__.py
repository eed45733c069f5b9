"""
ledgershift - participant migration and co-signed privileged calls for
services backed by an append-only event ledger.

This library provides:
- Participant discovery from historical ledger events, without an index
- Fixed-size batch migration that tolerates partial failure and re-runs
- Sampled before/after verification and deterministic run reports
- EIP-712 co-signed authorization of privileged calls with replay protection
- In-memory and web3 collaborators, run records in SQLite or PostgreSQL
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ledgershift")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from ledgershift.authorization import (
    AuthorizationAttempt,
    AuthorizationMessage,
    AuthorizationOutcome,
    AuthorizationSigner,
    AuthorizationState,
    LocalAccountAuthority,
    PrivilegedCallFlow,
    SignedAuthorization,
    SigningAuthority,
    function_selector,
    verify_authorization,
)
from ledgershift.config import (
    AuthorizationConfig,
    DomainSeparator,
    ExecutionConfig,
    OrchestratorConfig,
    ScanConfig,
)
from ledgershift.exceptions import (
    AuthorizationError,
    AuthorizationStateError,
    BatchSubmissionFailedError,
    DiscoveryPartialError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    ExpiredAuthorizationError,
    InvalidAddressError,
    InvalidConfigurationError,
    LedgerQueryError,
    LedgerShiftError,
    ServiceCallError,
    SignatureMismatchError,
    StaleNonceError,
    VerificationInconsistentError,
    classify_exception,
)
from ledgershift.ledger import (
    EVM_AVAILABLE,
    EventFilter,
    InMemoryLedger,
    InMemoryMigrationService,
    LedgerClient,
    LedgerEvent,
    MigrationService,
    ParticipantSnapshot,
)
from ledgershift.migration import (
    Batch,
    BatchPlanner,
    DiscoveryResult,
    DiscoveryStatus,
    EventScanner,
    MigrationExecutor,
    MigrationOrchestrator,
    MigrationOutcome,
    MigrationReporter,
    MigrationVerifier,
    RunResult,
    RunSummary,
    VerificationNote,
)
from ledgershift.participants import ParticipantSet, is_address, normalize_address

__all__ = [
    "__version__",
    # Participants
    "ParticipantSet",
    "is_address",
    "normalize_address",
    # Configuration
    "AuthorizationConfig",
    "DomainSeparator",
    "ExecutionConfig",
    "OrchestratorConfig",
    "ScanConfig",
    # Collaborators
    "EVM_AVAILABLE",
    "EventFilter",
    "InMemoryLedger",
    "InMemoryMigrationService",
    "LedgerClient",
    "LedgerEvent",
    "MigrationService",
    "ParticipantSnapshot",
    # Migration
    "Batch",
    "BatchPlanner",
    "DiscoveryResult",
    "DiscoveryStatus",
    "EventScanner",
    "MigrationExecutor",
    "MigrationOrchestrator",
    "MigrationOutcome",
    "MigrationReporter",
    "MigrationVerifier",
    "RunResult",
    "RunSummary",
    "VerificationNote",
    # Authorization
    "AuthorizationAttempt",
    "AuthorizationMessage",
    "AuthorizationOutcome",
    "AuthorizationSigner",
    "AuthorizationState",
    "LocalAccountAuthority",
    "PrivilegedCallFlow",
    "SignedAuthorization",
    "SigningAuthority",
    "function_selector",
    "verify_authorization",
    # Exceptions
    "LedgerShiftError",
    "ErrorClassification",
    "ErrorRecoverability",
    "ErrorSeverity",
    "classify_exception",
    "AuthorizationError",
    "AuthorizationStateError",
    "BatchSubmissionFailedError",
    "DiscoveryPartialError",
    "ExpiredAuthorizationError",
    "InvalidAddressError",
    "InvalidConfigurationError",
    "LedgerQueryError",
    "ServiceCallError",
    "SignatureMismatchError",
    "StaleNonceError",
    "VerificationInconsistentError",
]
