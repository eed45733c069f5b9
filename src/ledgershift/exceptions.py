"""
Exceptions for the ledgershift migration and authorization system.

This module defines every exception raised or recorded by ledgershift,
organized by the stage of a run that produces them.

Exception Hierarchy:
    LedgerShiftError (base)
    +-- InvalidConfigurationError (also ValueError)
    +-- InvalidAddressError (also ValueError)
    +-- LedgerQueryError
    +-- DiscoveryPartialError
    +-- ServiceCallError
    +-- BatchSubmissionFailedError
    +-- VerificationInconsistentError
    +-- AuthorizationStateError
    +-- AuthorizationError
        +-- ExpiredAuthorizationError
        +-- StaleNonceError
        +-- SignatureMismatchError

Error Classification:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorClassification: metadata attached to each error type

Only InvalidConfigurationError aborts a run. Every other error is local to
one unit of work (one query, one batch, one sampled participant or one
privileged-call attempt) and is recorded rather than propagated.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class ErrorSeverity(Enum):
    """
    Severity level of ledgershift errors.

    Errors are logged at the level matching their severity.

    Attributes:
        CRITICAL: Run-level failure requiring immediate attention.
        ERROR: Failed unit of work that needs operator follow-up.
        WARNING: Degraded result that should be monitored.
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for ledgershift errors.

    Attributes:
        RECOVERABLE: Recovered by an operator re-run. Migration is
            idempotent per participant, so re-running the full batch
            sequence is the supported recovery path.
        TRANSIENT: Temporary condition (timeouts, dropped connections)
            that may not recur on the next run.
        FATAL: Nothing can proceed until the cause is fixed.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        metrics_labels: Labels for metrics instrumentation.

    Example:
        >>> classification = ErrorClassification(
        ...     severity=ErrorSeverity.WARNING,
        ...     recoverability=ErrorRecoverability.TRANSIENT,
        ...     error_code="CALL_TIMEOUT",
        ...     category="connectivity",
        ...     suggested_action="Check the ledger endpoint and re-run",
        ... )
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    metrics_labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert classification to dictionary for serialization."""
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.metrics_labels:
            result["metrics_labels"] = self.metrics_labels
        return result


class LedgerShiftError(Exception):
    """
    Base exception for all ledgershift errors.

    Attributes:
        message: Human-readable error description.
        run_id: The migration run that produced the error, if any.
        suggested_action: Run-specific guidance overriding the classification.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="LEDGERSHIFT_ERROR",
        category="general",
        suggested_action="Review the run log and re-run once the cause is fixed",
    )

    def __init__(
        self,
        message: str,
        *,
        run_id: UUID | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.run_id = run_id
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        if self.run_id:
            return f"{self.message} run_id={self.run_id}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability_type(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for reports and run records.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "run_id": str(self.run_id) if self.run_id else None,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class InvalidConfigurationError(LedgerShiftError, ValueError):
    """
    Raised when configuration or planner input is invalid.

    This is the only error that aborts a run.

    Attributes:
        field_name: The offending configuration field, if known.
        value: The rejected value.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_CONFIGURATION",
        category="configuration",
        suggested_action="Correct the configuration value and start a new run",
    )

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        value: Any = None,
    ) -> None:
        self.field_name = field_name
        self.value = value
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["field_name"] = self.field_name
        return result


class InvalidAddressError(LedgerShiftError, ValueError):
    """
    Raised when a value cannot be read as a 20-byte participant address.

    Attributes:
        value: The rejected value.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_ADDRESS",
        category="input",
        suggested_action="Supply a 20-byte hex address (0x followed by 40 hex digits)",
    )

    def __init__(self, value: Any, reason: str | None = None) -> None:
        self.value = value
        message = f"Invalid participant address: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class LedgerQueryError(LedgerShiftError):
    """
    Raised by ledger clients when a height lookup or event query fails.

    Attributes:
        event_kind: The event kind being queried, None for height lookups.
        start_block: First block of the queried range.
        end_block: Last block of the queried range.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="LEDGER_QUERY_FAILED",
        category="ledger",
        suggested_action=(
            "Check the ledger endpoint and its block range limits. "
            "Lower max_block_span if the provider rejects wide ranges."
        ),
    )

    def __init__(
        self,
        message: str,
        event_kind: str | None = None,
        start_block: int | None = None,
        end_block: int | None = None,
    ) -> None:
        self.event_kind = event_kind
        self.start_block = start_block
        self.end_block = end_block
        super().__init__(message)


class DiscoveryPartialError(LedgerShiftError):
    """
    Recorded when one event-kind query in one scan window fails.

    Discovery continues with zero results for that kind; the error is
    attached to the DiscoveryResult, never raised out of the scanner.

    Attributes:
        event_kind: The event kind whose query failed.
        start_block: First block of the failed range.
        end_block: Last block of the failed range.
        original_error: String form of the underlying failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="DISCOVERY_PARTIAL",
        category="discovery",
        suggested_action=(
            "Discovery is best-effort and may be incomplete. "
            "Re-run discovery once the ledger endpoint is healthy."
        ),
    )

    def __init__(
        self,
        event_kind: str,
        start_block: int,
        end_block: int,
        error: str,
    ) -> None:
        self.event_kind = event_kind
        self.start_block = start_block
        self.end_block = end_block
        self.original_error = error
        super().__init__(
            f"Query for {event_kind} in blocks [{start_block}, {end_block}] failed: {error}"
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "event_kind": self.event_kind,
                "start_block": self.start_block,
                "end_block": self.end_block,
                "original_error": self.original_error,
            }
        )
        return result


class ServiceCallError(LedgerShiftError):
    """
    Raised by service collaborators when a call or transaction fails.

    Attributes:
        operation: Name of the service operation that failed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="SERVICE_CALL_FAILED",
        category="service",
        suggested_action="Check the service endpoint and the submitting account",
    )

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class BatchSubmissionFailedError(LedgerShiftError):
    """
    Recorded when a batch's submission or confirmation fails entirely.

    The whole batch counts as failed and the run continues with the next
    batch.

    Attributes:
        batch_index: Index of the failed batch.
        total_users: Number of participants in the batch.
        original_error: String form of the underlying failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="BATCH_SUBMISSION_FAILED",
        category="migration",
        suggested_action=(
            "Re-run the migration. Already-migrated participants are "
            "no-ops, so the full batch sequence can be executed again."
        ),
    )

    def __init__(self, batch_index: int, total_users: int, error: str) -> None:
        self.batch_index = batch_index
        self.total_users = total_users
        self.original_error = error
        super().__init__(f"Batch {batch_index} ({total_users} participants) failed: {error}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "batch_index": self.batch_index,
                "total_users": self.total_users,
                "original_error": self.original_error,
            }
        )
        return result


class VerificationInconsistentError(LedgerShiftError):
    """
    Recorded when a sampled participant's state differs after migration.

    Diagnostic only: the run is not rolled back and nothing is corrected.

    Attributes:
        participant: The sampled participant address.
        mismatches: Field name to (before, after) pairs.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="VERIFICATION_INCONSISTENT",
        category="verification",
        suggested_action="Inspect the participant's state in both service versions",
    )

    def __init__(self, participant: str, mismatches: dict[str, tuple[Any, Any]]) -> None:
        self.participant = participant
        self.mismatches = mismatches
        fields = ", ".join(sorted(mismatches))
        super().__init__(f"State of {participant} changed during migration: {fields}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["participant"] = self.participant
        result["mismatches"] = {
            name: {"before": before, "after": after}
            for name, (before, after) in sorted(self.mismatches.items())
        }
        return result


class AuthorizationStateError(LedgerShiftError):
    """
    Raised on an illegal authorization attempt transition, such as
    submitting an attempt twice or signing an already-submitted attempt.

    Attributes:
        from_state: Current state name.
        to_state: Requested state name.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="AUTHORIZATION_STATE_INVALID",
        category="authorization",
        suggested_action="Create a new authorization attempt for each privileged call",
    )

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid authorization transition: {from_state} -> {to_state}")


class AuthorizationError(LedgerShiftError):
    """
    Base for rejections of a co-signed privileged call.

    Fatal to the single attempt, never to a run.

    Attributes:
        caller: The caller the authorization was issued for.
        nonce: The nonce carried by the authorization.
        reason: Short machine-readable rejection reason.
    """

    reason = "rejected"

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="AUTHORIZATION_REJECTED",
        category="authorization",
        suggested_action="Create a fresh authorization attempt",
    )

    def __init__(self, message: str, caller: str | None = None, nonce: int | None = None) -> None:
        self.caller = caller
        self.nonce = nonce
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update({"reason": self.reason, "caller": self.caller, "nonce": self.nonce})
        return result


class ExpiredAuthorizationError(AuthorizationError):
    """
    The authorization's deadline passed before it was verified.

    Attributes:
        deadline: Unix timestamp carried by the authorization.
        checked_at: Unix timestamp at verification.
    """

    reason = "expired"

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="AUTHORIZATION_EXPIRED",
        category="authorization",
        suggested_action="Request a new authorization with a later deadline",
    )

    def __init__(
        self,
        deadline: int,
        checked_at: int,
        caller: str | None = None,
        nonce: int | None = None,
    ) -> None:
        self.deadline = deadline
        self.checked_at = checked_at
        super().__init__(
            f"Authorization expired at {deadline} (checked at {checked_at})",
            caller=caller,
            nonce=nonce,
        )


class StaleNonceError(AuthorizationError):
    """
    The authorization's nonce was already consumed or is out of sequence.

    Attributes:
        expected_nonce: Next nonce the service expects for the caller.
    """

    reason = "stale_nonce"

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="AUTHORIZATION_STALE_NONCE",
        category="authorization",
        suggested_action="Fetch the current nonce and sign a new authorization",
    )

    def __init__(self, nonce: int, expected_nonce: int, caller: str | None = None) -> None:
        self.expected_nonce = expected_nonce
        super().__init__(
            f"Nonce {nonce} is stale, expected {expected_nonce}",
            caller=caller,
            nonce=nonce,
        )


class SignatureMismatchError(AuthorizationError):
    """
    The signature does not verify against domain, message and authority.

    Raised for altered fields, signatures for another operation and
    signatures from the wrong key.

    Attributes:
        expected_signer: The authority the service trusts.
        recovered_signer: The address recovered from the signature, if any.
    """

    reason = "signature_mismatch"

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="AUTHORIZATION_SIGNATURE_MISMATCH",
        category="authorization",
        suggested_action=(
            "Check that the domain separator, operation and authority key "
            "match the deployment being called"
        ),
    )

    def __init__(
        self,
        expected_signer: str,
        recovered_signer: str | None,
        caller: str | None = None,
        nonce: int | None = None,
    ) -> None:
        self.expected_signer = expected_signer
        self.recovered_signer = recovered_signer
        super().__init__(
            f"Signature recovers to {recovered_signer}, expected {expected_signer}",
            caller=caller,
            nonce=nonce,
        )


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception and return its error classification.

    For LedgerShiftError subclasses, returns their specific classification.
    Timeouts and connection failures are TRANSIENT; anything else is an
    unknown, FATAL error.

    Args:
        exc: The exception to classify.

    Returns:
        ErrorClassification for the exception.
    """
    if isinstance(exc, LedgerShiftError):
        return exc.classification

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClassification(
            severity=ErrorSeverity.WARNING,
            recoverability=ErrorRecoverability.TRANSIENT,
            error_code="CALL_TIMEOUT",
            category="connectivity",
            suggested_action="The external call timed out. Re-run once the endpoint responds.",
        )

    if isinstance(exc, ConnectionError):
        return ErrorClassification(
            severity=ErrorSeverity.WARNING,
            recoverability=ErrorRecoverability.TRANSIENT,
            error_code="CONNECTION_FAILED",
            category="connectivity",
            suggested_action="Check network connectivity to the ledger endpoint.",
        )

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review the run log.",
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "LedgerShiftError",
    "InvalidConfigurationError",
    "InvalidAddressError",
    "LedgerQueryError",
    "DiscoveryPartialError",
    "ServiceCallError",
    "BatchSubmissionFailedError",
    "VerificationInconsistentError",
    "AuthorizationStateError",
    "AuthorizationError",
    "ExpiredAuthorizationError",
    "StaleNonceError",
    "SignatureMismatchError",
    "classify_exception",
]
