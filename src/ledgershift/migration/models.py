"""
Data models for migration runs.

Models:
    - DiscoveryResult: Participants found by EventScanner and how
    - Batch: Fixed-size, indexed slice of the participant set
    - MigrationOutcome: Per-batch counts with success + failure == total
    - VerificationNote: Per-participant comparison of pre/post state
    - BatchExecution: One executed batch with its outcome and notes
    - RunSummary: Aggregate of a run, always producible
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from ledgershift.exceptions import (
    BatchSubmissionFailedError,
    DiscoveryPartialError,
    VerificationInconsistentError,
)
from ledgershift.participants import ParticipantSet


class DiscoveryStatus(Enum):
    """
    How a discovery pass ended.

    Values:
        FOUND: A scan window produced participants
        EMPTY: Every window was empty and no fallback list was configured
        FALLBACK: Every window was empty; the operator fallback list was used
        ERROR: Nothing was found and every query of at least one window
            (or the height lookup) failed, so emptiness says nothing about
            the ledger
    """

    FOUND = "found"
    EMPTY = "empty"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass(frozen=True)
class ScanWindow:
    """
    Inclusive block range scanned in one discovery step.

    Attributes:
        lookback: Configured window size in blocks
        start_block: First block, clamped at zero
        end_block: Ledger height the window is anchored at
    """

    lookback: int
    start_block: int
    end_block: int

    @classmethod
    def anchored(cls, height: int, lookback: int) -> ScanWindow:
        return cls(lookback=lookback, start_block=max(0, height - lookback), end_block=height)

    def to_dict(self) -> dict[str, int]:
        return {
            "lookback": self.lookback,
            "start_block": self.start_block,
            "end_block": self.end_block,
        }


@dataclass
class DiscoveryResult:
    """
    Result of one discovery pass.

    Discovery is best-effort: failed queries count as zero results and are
    listed in ``failures``. A FOUND result may therefore be incomplete.

    Attributes:
        participants: Discovered participants in discovery order
        status: How discovery ended
        height: Ledger height the windows were anchored at
        window: Window that produced the participants, if any
        windows_scanned: Number of windows queried
        queries: Number of queries issued
        failures: One record per failed query
    """

    participants: ParticipantSet
    status: DiscoveryStatus
    height: int | None = None
    window: ScanWindow | None = None
    windows_scanned: int = 0
    queries: int = 0
    failures: list[DiscoveryPartialError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True if any query failed."""
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "participant_count": len(self.participants),
            "height": self.height,
            "window": self.window.to_dict() if self.window else None,
            "windows_scanned": self.windows_scanned,
            "queries": self.queries,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class Batch:
    """
    Ordered slice of the participant set.

    Attributes:
        index: Sequence index, 0..batch_count-1
        participants: Normalized addresses in discovery order
    """

    index: int
    participants: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.participants)

    def sample(self, size: int) -> tuple[str, ...]:
        """First ``size`` participants, used for verification snapshots."""
        return self.participants[:size]

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "participants": list(self.participants)}


class BatchStatus(Enum):
    """
    How a batch submission ended.

    Values:
        CONFIRMED: Transaction confirmed
        REVERTED: Transaction confirmed as reverted
        FAILED: Submission raised or timed out; no confirmation obtained
    """

    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationOutcome:
    """
    Per-batch migration record.

    Invariant: ``success_count + failure_count == total_users``.

    Attributes:
        batch_index: Index of the batch
        total_users: Participants in the batch
        success_count: Participants migrated (or already migrated)
        failure_count: Participants not migrated
        tx_reference: Transaction reference, None if nothing was confirmed
        status: How the submission ended
        error: Failure record for REVERTED and FAILED batches
        result_event_seen: Whether counts came from a result event
    """

    batch_index: int
    total_users: int
    success_count: int
    failure_count: int
    tx_reference: str | None = None
    status: BatchStatus = BatchStatus.CONFIRMED
    error: BatchSubmissionFailedError | None = None
    result_event_seen: bool = False

    def __post_init__(self) -> None:
        if min(self.total_users, self.success_count, self.failure_count) < 0:
            raise ValueError(
                f"batch {self.batch_index}: counts must be >= 0 "
                f"(total={self.total_users}, success={self.success_count}, "
                f"failure={self.failure_count})"
            )
        if self.success_count + self.failure_count != self.total_users:
            raise ValueError(
                f"batch {self.batch_index}: success_count ({self.success_count}) + "
                f"failure_count ({self.failure_count}) != total_users ({self.total_users})"
            )

    @classmethod
    def failed(
        cls,
        batch: Batch,
        error: BatchSubmissionFailedError,
        status: BatchStatus = BatchStatus.FAILED,
        tx_reference: str | None = None,
    ) -> MigrationOutcome:
        """Record a batch whose submission failed entirely."""
        return cls(
            batch_index=batch.index,
            total_users=len(batch),
            success_count=0,
            failure_count=len(batch),
            tx_reference=tx_reference,
            status=status,
            error=error,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.CONFIRMED and self.failure_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_index": self.batch_index,
            "total_users": self.total_users,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "tx_reference": self.tx_reference,
            "status": self.status.value,
            "result_event_seen": self.result_event_seen,
            "error": self.error.to_dict() if self.error else None,
        }


class VerificationStatus(Enum):
    """Per-participant verification result."""

    CONSISTENT = "consistent"
    INCONSISTENT = "inconsistent"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class VerificationNote:
    """
    Comparison of one sampled participant before and after migration.

    Attributes:
        participant: Sampled participant
        batch_index: Batch the participant was migrated in
        status: consistent, inconsistent or unavailable
        mismatches: Field name to (before, after) for inconsistent notes
        error: Inconsistency record for inconsistent notes
        detail: Why the comparison was unavailable
    """

    participant: str
    batch_index: int
    status: VerificationStatus
    mismatches: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    error: VerificationInconsistentError | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant": self.participant,
            "batch_index": self.batch_index,
            "status": self.status.value,
            "mismatches": {
                name: {"before": before, "after": after}
                for name, (before, after) in sorted(self.mismatches.items())
            },
            "detail": self.detail,
        }


@dataclass(frozen=True)
class BatchExecution:
    """
    One executed batch as yielded by MigrationExecutor.run().

    Attributes:
        batch: The executed batch
        outcome: Its migration outcome
        notes: Verification notes for its sampled participants
        duration_seconds: Wall time spent on the batch
    """

    batch: Batch
    outcome: MigrationOutcome
    notes: tuple[VerificationNote, ...] = ()
    duration_seconds: float = 0.0


class RunResult(Enum):
    """
    Overall result of a run, as shown to operators.

    Values:
        SUCCESS: Every participant migrated
        PARTIAL_FAILURE: Some participants migrated, some failed
        MIGRATION_FAILURE: Participants were found but none migrated
        NO_DATA: Discovery found nothing and no query failed wholesale
        DISCOVERY_ERROR: Discovery found nothing because queries failed
    """

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    MIGRATION_FAILURE = "migration_failure"
    NO_DATA = "no_data"
    DISCOVERY_ERROR = "discovery_error"


@dataclass(frozen=True)
class RunSummary:
    """
    Aggregate of a migration run.

    Counts cover completed batches only; a cancelled run reports the
    batches it finished. Invariant:
    ``total_successes + total_failures == total_users``.

    Attributes:
        run_id: Unique identifier of the run
        total_users: Participants in completed batches
        total_successes: Participants migrated
        total_failures: Participants not migrated
        participants_discovered: Size of the discovered set
        batches_planned: Batches produced by the planner
        batches_completed: Batches executed (confirmed, reverted or failed)
        batches_failed: Batches that failed entirely
        cancelled: Whether the run stopped before all batches executed
        dry_run: Whether batches were planned but not submitted
        discovery_status: How discovery ended, None for direct executions
        discovery_failures: Number of failed discovery queries
        verification_counts: Note status value to count
        outcomes: Per-batch outcomes in index order
        notes: Verification notes in batch order
        started_at: When the run started
        completed_at: When the summary was produced
    """

    run_id: UUID = field(default_factory=uuid4)
    total_users: int = 0
    total_successes: int = 0
    total_failures: int = 0
    participants_discovered: int = 0
    batches_planned: int = 0
    batches_completed: int = 0
    batches_failed: int = 0
    cancelled: bool = False
    dry_run: bool = False
    discovery_status: DiscoveryStatus | None = None
    discovery_failures: int = 0
    verification_counts: dict[str, int] = field(default_factory=dict)
    outcomes: tuple[MigrationOutcome, ...] = ()
    notes: tuple[VerificationNote, ...] = ()
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.total_successes + self.total_failures != self.total_users:
            raise ValueError(
                f"total_successes ({self.total_successes}) + total_failures "
                f"({self.total_failures}) != total_users ({self.total_users})"
            )

    @property
    def result(self) -> RunResult:
        if self.total_users == 0:
            if self.discovery_status == DiscoveryStatus.ERROR:
                return RunResult.DISCOVERY_ERROR
            return RunResult.NO_DATA
        if self.total_failures == 0:
            return RunResult.SUCCESS
        if self.total_successes == 0:
            return RunResult.MIGRATION_FAILURE
        return RunResult.PARTIAL_FAILURE

    @property
    def success_rate(self) -> float:
        """Fraction of participants migrated (1.0 for empty runs)."""
        if self.total_users == 0:
            return 1.0
        return self.total_successes / self.total_users

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "result": self.result.value,
            "total_users": self.total_users,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "participants_discovered": self.participants_discovered,
            "batches_planned": self.batches_planned,
            "batches_completed": self.batches_completed,
            "batches_failed": self.batches_failed,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "discovery_status": self.discovery_status.value if self.discovery_status else None,
            "discovery_failures": self.discovery_failures,
            "verification": dict(sorted(self.verification_counts.items())),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "notes": [n.to_dict() for n in self.notes],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
        }


__all__ = [
    "Batch",
    "BatchExecution",
    "BatchStatus",
    "DiscoveryResult",
    "DiscoveryStatus",
    "MigrationOutcome",
    "RunResult",
    "RunSummary",
    "ScanWindow",
    "VerificationNote",
    "VerificationStatus",
]
