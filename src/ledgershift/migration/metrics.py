"""
OpenTelemetry metrics for migration runs and privileged calls.

The metrics degrade gracefully when OpenTelemetry is not installed - all
operations become no-ops without raising errors.

Example:
    >>> from ledgershift.migration.metrics import MigrationMetrics
    >>>
    >>> metrics = MigrationMetrics(run_id="run-123")
    >>> metrics.record_query("Staked", success=True)
    >>> metrics.record_batch(success_count=50, failure_count=0, duration_seconds=4.2)
    >>> metrics.record_verification("consistent")

Metrics Exposed:
    - ledgershift.discovery.queries (Counter): Ledger queries, by event kind and outcome
    - ledgershift.discovery.participants (Counter): Participants discovered, by status
    - ledgershift.batches (Counter): Executed batches, by status
    - ledgershift.participants.migrated (Counter): Participants migrated
    - ledgershift.participants.failed (Counter): Participants not migrated
    - ledgershift.batch.duration (Histogram): Seconds per batch
    - ledgershift.verification.notes (Counter): Verification notes, by status
    - ledgershift.authorizations (Counter): Privileged-call outcomes, by reason

All metrics carry the 'run_id' attribute for filtering.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import metrics

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    OTEL_METRICS_AVAILABLE = False
    metrics = None  # type: ignore[assignment]


# Module-level meter instance
_meter: Any = None


def _get_meter() -> Any:
    """
    Get or create the meter instance.

    Returns:
        OpenTelemetry Meter for the ledgershift namespace, or None
    """
    global _meter
    if _meter is None and OTEL_METRICS_AVAILABLE and metrics is not None:
        _meter = metrics.get_meter("ledgershift.migration", version="0.1.0")
    return _meter


def reset_meter() -> None:
    """
    Reset the global meter instance.

    Useful for testing to ensure fresh meter state between tests.
    """
    global _meter
    _meter = None


class NoOpCounter:
    """No-op counter when OpenTelemetry is not available."""

    def add(
        self,
        amount: int | float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        pass


class NoOpHistogram:
    """No-op histogram when OpenTelemetry is not available."""

    def record(
        self,
        value: float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        pass


@dataclass(frozen=True)
class MigrationMetricSnapshot:
    """
    Snapshot of metric values recorded by one MigrationMetrics instance.

    Attributes:
        queries: Ledger queries issued
        failed_queries: Ledger queries that failed
        participants_discovered: Participants found by discovery
        batches: Batches executed
        failed_batches: Batches with zero successes
        participants_migrated: Participants migrated
        participants_failed: Participants not migrated
        verification_notes: Note status to count
        authorizations: Authorization reason to count
        batch_durations: Seconds per executed batch
    """

    queries: int = 0
    failed_queries: int = 0
    participants_discovered: int = 0
    batches: int = 0
    failed_batches: int = 0
    participants_migrated: int = 0
    participants_failed: int = 0
    verification_notes: dict[str, int] = field(default_factory=dict)
    authorizations: dict[str, int] = field(default_factory=dict)
    batch_durations: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queries": self.queries,
            "failed_queries": self.failed_queries,
            "participants_discovered": self.participants_discovered,
            "batches": self.batches,
            "failed_batches": self.failed_batches,
            "participants_migrated": self.participants_migrated,
            "participants_failed": self.participants_failed,
            "verification_notes": dict(self.verification_notes),
            "authorizations": dict(self.authorizations),
            "batch_durations": list(self.batch_durations),
        }


@dataclass
class MigrationMetrics:
    """
    Container for migration metrics instruments.

    All methods are safe to call when OpenTelemetry is not installed.

    Attributes:
        run_id: Run identifier for metric labels
        enable_metrics: Whether metrics are enabled (default True)
    """

    run_id: str = ""
    enable_metrics: bool = True

    _meter: Any = field(default=None, init=False, repr=False)
    _query_counter: Any = field(default=None, init=False, repr=False)
    _discovered_counter: Any = field(default=None, init=False, repr=False)
    _batch_counter: Any = field(default=None, init=False, repr=False)
    _migrated_counter: Any = field(default=None, init=False, repr=False)
    _failed_counter: Any = field(default=None, init=False, repr=False)
    _batch_duration_histogram: Any = field(default=None, init=False, repr=False)
    _verification_counter: Any = field(default=None, init=False, repr=False)
    _authorization_counter: Any = field(default=None, init=False, repr=False)

    # Internal counters for snapshot
    _queries: int = field(default=0, init=False, repr=False)
    _failed_queries: int = field(default=0, init=False, repr=False)
    _discovered: int = field(default=0, init=False, repr=False)
    _batches: int = field(default=0, init=False, repr=False)
    _failed_batches: int = field(default=0, init=False, repr=False)
    _migrated: int = field(default=0, init=False, repr=False)
    _failed: int = field(default=0, init=False, repr=False)
    _notes: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _authorizations: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _durations: list[float] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.enable_metrics and OTEL_METRICS_AVAILABLE:
            self._setup_metrics()
        else:
            self._setup_noop()

    def _setup_metrics(self) -> None:
        self._meter = _get_meter()

        if self._meter is None:
            self._setup_noop()
            return

        self._query_counter = self._meter.create_counter(
            name="ledgershift.discovery.queries",
            unit="queries",
            description="Ledger event queries issued during discovery",
        )
        self._discovered_counter = self._meter.create_counter(
            name="ledgershift.discovery.participants",
            unit="participants",
            description="Participants discovered",
        )
        self._batch_counter = self._meter.create_counter(
            name="ledgershift.batches",
            unit="batches",
            description="Migration batches executed",
        )
        self._migrated_counter = self._meter.create_counter(
            name="ledgershift.participants.migrated",
            unit="participants",
            description="Participants migrated successfully",
        )
        self._failed_counter = self._meter.create_counter(
            name="ledgershift.participants.failed",
            unit="participants",
            description="Participants not migrated",
        )
        self._batch_duration_histogram = self._meter.create_histogram(
            name="ledgershift.batch.duration",
            unit="s",
            description="Time spent submitting and confirming one batch",
        )
        self._verification_counter = self._meter.create_counter(
            name="ledgershift.verification.notes",
            unit="notes",
            description="Post-migration verification notes by status",
        )
        self._authorization_counter = self._meter.create_counter(
            name="ledgershift.authorizations",
            unit="calls",
            description="Co-signed privileged call outcomes",
        )

    def _setup_noop(self) -> None:
        self._query_counter = NoOpCounter()
        self._discovered_counter = NoOpCounter()
        self._batch_counter = NoOpCounter()
        self._migrated_counter = NoOpCounter()
        self._failed_counter = NoOpCounter()
        self._batch_duration_histogram = NoOpHistogram()
        self._verification_counter = NoOpCounter()
        self._authorization_counter = NoOpCounter()

    def _base_attributes(self) -> dict[str, str]:
        return {"run_id": self.run_id}

    def record_query(self, event_kind: str, success: bool = True) -> None:
        """Record one ledger query."""
        attrs = {
            **self._base_attributes(),
            "event_kind": event_kind,
            "success": str(success).lower(),
        }
        self._query_counter.add(1, attrs)
        self._queries += 1
        if not success:
            self._failed_queries += 1

    def record_discovery(self, status: str, participant_count: int) -> None:
        """Record the result of a discovery pass."""
        attrs = {**self._base_attributes(), "status": status}
        self._discovered_counter.add(participant_count, attrs)
        self._discovered += participant_count

    def record_batch(
        self,
        success_count: int,
        failure_count: int,
        duration_seconds: float,
        status: str = "confirmed",
    ) -> None:
        """
        Record one executed batch.

        Args:
            success_count: Participants migrated
            failure_count: Participants not migrated
            duration_seconds: Time spent on the batch
            status: Batch status value (confirmed, reverted, failed)
        """
        attrs = {**self._base_attributes(), "status": status}
        self._batch_counter.add(1, attrs)
        self._migrated_counter.add(success_count, self._base_attributes())
        self._failed_counter.add(failure_count, self._base_attributes())
        self._batch_duration_histogram.record(duration_seconds, attrs)

        self._batches += 1
        if success_count == 0 and failure_count > 0:
            self._failed_batches += 1
        self._migrated += success_count
        self._failed += failure_count
        self._durations.append(duration_seconds)

    def record_verification(self, status: str) -> None:
        """Record one verification note by status value."""
        attrs = {**self._base_attributes(), "status": status}
        self._verification_counter.add(1, attrs)
        self._notes[status] = self._notes.get(status, 0) + 1

    def record_authorization(self, reason: str) -> None:
        """Record a privileged-call outcome ("accepted" or a rejection reason)."""
        attrs = {**self._base_attributes(), "reason": reason}
        self._authorization_counter.add(1, attrs)
        self._authorizations[reason] = self._authorizations.get(reason, 0) + 1

    def get_snapshot(self) -> MigrationMetricSnapshot:
        """Get a snapshot of the values recorded so far."""
        return MigrationMetricSnapshot(
            queries=self._queries,
            failed_queries=self._failed_queries,
            participants_discovered=self._discovered,
            batches=self._batches,
            failed_batches=self._failed_batches,
            participants_migrated=self._migrated,
            participants_failed=self._failed,
            verification_notes=dict(self._notes),
            authorizations=dict(self._authorizations),
            batch_durations=list(self._durations),
        )


__all__ = [
    "OTEL_METRICS_AVAILABLE",
    "MigrationMetricSnapshot",
    "MigrationMetrics",
    "NoOpCounter",
    "NoOpHistogram",
    "reset_meter",
]
