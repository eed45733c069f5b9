"""
MigrationOrchestrator - drives one migration run end to end.

Pipeline:
    EventScanner -> BatchPlanner -> MigrationExecutor (+ MigrationVerifier)
    -> MigrationReporter -> RunRecordRepository

A run always ends with a RunSummary, whatever happened to discovery or to
individual batches. Only invalid configuration aborts a run, and it does so
before anything is submitted.

Usage:
    >>> orchestrator = MigrationOrchestrator(ledger, service, OrchestratorConfig())
    >>> summary = await orchestrator.run()
    >>> summary.result
    <RunResult.SUCCESS: 'success'>
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID, uuid4

from ledgershift.config import OrchestratorConfig
from ledgershift.ledger.interface import LedgerClient, MigrationService
from ledgershift.migration.executor import MigrationExecutor
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.migration.models import (
    DiscoveryResult,
    MigrationOutcome,
    RunSummary,
    VerificationNote,
)
from ledgershift.migration.planner import BatchPlanner
from ledgershift.migration.reporter import MigrationReporter
from ledgershift.migration.repositories.run_log import RunRecordRepository
from ledgershift.migration.scanner import EventScanner
from ledgershift.observability import (
    ATTR_BATCH_COUNT,
    ATTR_BATCH_SIZE,
    ATTR_PARTICIPANT_COUNT,
    ATTR_RUN_ID,
    ATTR_RUN_RESULT,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Composes the migration components into a single run.

    Attributes:
        config: Run configuration
        metrics: Metrics of the most recent run
        last_discovery: Discovery result of the most recent run
    """

    def __init__(
        self,
        ledger: LedgerClient,
        service: MigrationService,
        config: OrchestratorConfig | None = None,
        *,
        repository: RunRecordRepository | None = None,
        metrics: MigrationMetrics | None = None,
        reporter: MigrationReporter | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            ledger: Ledger to discover participants on
            service: Service to migrate participants into
            config: Run configuration (defaults to OrchestratorConfig())
            repository: Optional store for run records
            metrics: Metrics recorder; a fresh one per run when omitted
            reporter: Summary builder (defaults to MigrationReporter())
            tracer: Optional custom Tracer
            enable_tracing: Whether to create a default tracer when none is given

        Raises:
            InvalidConfigurationError: If the batch size is not positive
        """
        self._ledger = ledger
        self._service = service
        self._config = config or OrchestratorConfig()
        self._repository = repository
        self._fixed_metrics = metrics
        self._reporter = reporter or MigrationReporter()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._planner = BatchPlanner(self._config.execution.batch_size)
        self._executor: MigrationExecutor | None = None
        self._cancel_requested = False
        self.metrics: MigrationMetrics | None = metrics
        self.last_discovery: DiscoveryResult | None = None

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def cancel(self) -> None:
        """
        Stop the run after the batch in flight.

        Cancellation is sticky: a cancelled orchestrator submits no further
        batches. The run still returns a summary of completed batches.
        """
        self._cancel_requested = True
        if self._executor is not None:
            self._executor.cancel()

    async def run(self, *, dry_run: bool = False, run_id: UUID | None = None) -> RunSummary:
        """
        Discover, plan, execute, verify and report.

        Args:
            dry_run: Stop after planning; nothing is submitted or persisted
            run_id: Identifier for the run (generated when omitted)

        Returns:
            RunSummary of the run
        """
        run_id = run_id or uuid4()
        started_at = datetime.now(UTC)
        metrics = self._fixed_metrics or MigrationMetrics(run_id=str(run_id))
        self.metrics = metrics

        with self._tracer.span("ledgershift.orchestrator.run", {ATTR_RUN_ID: str(run_id)}) as span:
            logger.info("Starting migration run %s", run_id)
            scanner = EventScanner(
                self._ledger,
                self._config.scan,
                call_timeout_seconds=self._config.execution.call_timeout_seconds,
                metrics=metrics,
                tracer=self._tracer,
            )
            discovery = await scanner.discover()
            self.last_discovery = discovery
            if discovery.partial:
                logger.warning(
                    "Discovery for run %s is partial: %d queries failed",
                    run_id,
                    len(discovery.failures),
                )

            batches = self._planner.plan(discovery.participants)
            logger.info(
                "Planned %d batches of up to %d for %d participants",
                len(batches),
                self._planner.batch_size,
                len(discovery.participants),
            )
            if span is not None:
                span.set_attribute(ATTR_PARTICIPANT_COUNT, len(discovery.participants))
                span.set_attribute(ATTR_BATCH_COUNT, len(batches))
                span.set_attribute(ATTR_BATCH_SIZE, self._planner.batch_size)

            outcomes: list[MigrationOutcome] = []
            notes: list[VerificationNote] = []
            if not dry_run:
                executor = MigrationExecutor(
                    self._service,
                    self._config.execution,
                    metrics=metrics,
                    tracer=self._tracer,
                )
                self._executor = executor
                if self._cancel_requested:
                    executor.cancel()
                try:
                    async for execution in executor.run(batches):
                        outcomes.append(execution.outcome)
                        notes.extend(execution.notes)
                finally:
                    self._executor = None

            summary = self._reporter.summarize(
                outcomes,
                notes,
                discovery=discovery,
                batches_planned=len(batches),
                cancelled=not dry_run and len(outcomes) < len(batches),
                dry_run=dry_run,
                run_id=run_id,
                started_at=started_at,
            )
            if span is not None:
                span.set_attribute(ATTR_RUN_RESULT, summary.result.value)

        logger.info(
            "Migration run %s finished: %s (%d/%d migrated, %d failed)",
            run_id,
            summary.result.value,
            summary.total_successes,
            summary.total_users,
            summary.total_failures,
        )
        if not dry_run:
            await self._persist(summary)
        return summary

    async def _persist(self, summary: RunSummary) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.save(summary)
        except Exception as e:
            logger.error(
                "Could not persist record for run %s: %s",
                summary.run_id,
                e,
                exc_info=True,
            )


__all__ = ["MigrationOrchestrator"]
