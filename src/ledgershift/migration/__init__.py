"""
Participant migration between service versions.

Pipeline components:
- EventScanner: discovers participants from historical events
- BatchPlanner: partitions them into fixed-size batches
- MigrationExecutor: submits batches sequentially, containing failures
- MigrationVerifier: compares sampled participants before and after
- MigrationReporter: folds outcomes into a RunSummary
- MigrationOrchestrator: runs the whole pipeline and records the run

Example:
    >>> from ledgershift.migration import MigrationOrchestrator
    >>> summary = await MigrationOrchestrator(ledger, service).run()
    >>> print(MigrationReporter().render_text(summary))
"""

from ledgershift.migration.executor import MigrationExecutor
from ledgershift.migration.metrics import (
    OTEL_METRICS_AVAILABLE,
    MigrationMetrics,
    MigrationMetricSnapshot,
)
from ledgershift.migration.models import (
    Batch,
    BatchExecution,
    BatchStatus,
    DiscoveryResult,
    DiscoveryStatus,
    MigrationOutcome,
    RunResult,
    RunSummary,
    ScanWindow,
    VerificationNote,
    VerificationStatus,
)
from ledgershift.migration.orchestrator import MigrationOrchestrator
from ledgershift.migration.planner import BatchPlanner, plan_batches
from ledgershift.migration.reporter import MigrationReporter
from ledgershift.migration.repositories import (
    InMemoryRunRecordRepository,
    PostgreSQLRunRecordRepository,
    RunRecord,
    RunRecordRepository,
    SQLiteRunRecordRepository,
)
from ledgershift.migration.scanner import EventScanner
from ledgershift.migration.verifier import MigrationVerifier

__all__ = [
    # Components
    "EventScanner",
    "BatchPlanner",
    "plan_batches",
    "MigrationExecutor",
    "MigrationVerifier",
    "MigrationReporter",
    "MigrationOrchestrator",
    # Models
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
    # Metrics
    "OTEL_METRICS_AVAILABLE",
    "MigrationMetrics",
    "MigrationMetricSnapshot",
    # Run records
    "RunRecord",
    "RunRecordRepository",
    "InMemoryRunRecordRepository",
    "SQLiteRunRecordRepository",
    "PostgreSQLRunRecordRepository",
]
