"""
MigrationExecutor - submits batches to the service one at a time.

Responsibilities:
- Execute batches strictly sequentially, in index order
- Snapshot up to ``verification_sample_size`` participants before each batch
- Bound every submission with a timeout
- Derive per-batch counts from the receipt and its result event
- Contain every failure to its batch and keep going
- Stop between batches when cancelled

Counting rules:
- Confirmed receipt with a result event: success count from the event,
  clamped to the batch size
- Confirmed receipt without a result event: every participant succeeded
- Reverted receipt, exception or timeout: every participant failed, with a
  BatchSubmissionFailedError on the outcome

Re-running the full batch sequence after a partial failure is the
supported recovery path; the service treats already-migrated participants
as no-ops, so a re-run never adds failures for them.

Usage:
    >>> executor = MigrationExecutor(service, ExecutionConfig(batch_size=50))
    >>> async for execution in executor.run(batches):
    ...     print(execution.outcome.batch_index, execution.outcome.success_count)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable

from ledgershift.config import ExecutionConfig
from ledgershift.exceptions import (
    BatchSubmissionFailedError,
    InvalidConfigurationError,
    classify_exception,
)
from ledgershift.ledger.interface import MigrationReceipt, MigrationService
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.migration.models import (
    Batch,
    BatchExecution,
    BatchStatus,
    MigrationOutcome,
    VerificationNote,
)
from ledgershift.migration.verifier import MigrationVerifier
from ledgershift.observability import (
    ATTR_BATCH_INDEX,
    ATTR_PARTICIPANT_COUNT,
    ATTR_SUCCESS_COUNT,
    ATTR_TX_REFERENCE,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class MigrationExecutor:
    """
    Executes planned batches against a MigrationService.

    Attributes:
        service: Service receiving bulk migration calls
        config: Execution settings
    """

    def __init__(
        self,
        service: MigrationService,
        config: ExecutionConfig | None = None,
        *,
        verifier: MigrationVerifier | None = None,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the executor.

        Args:
            service: Service receiving bulk migration calls
            config: Execution settings (defaults to ExecutionConfig())
            verifier: Verifier for sampled participants; one is created from
                config when omitted and sampling is enabled
            metrics: Optional metrics recorder
            tracer: Optional custom Tracer
            enable_tracing: Whether to create a default tracer when none is given
        """
        self._service = service
        self._config = config or ExecutionConfig()
        self._metrics = metrics
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        if verifier is None and self._config.verification_sample_size > 0:
            verifier = MigrationVerifier(
                service,
                self._config.verification_fields,
                call_timeout_seconds=self._config.call_timeout_seconds,
                metrics=metrics,
                tracer=self._tracer,
            )
        self._verifier = verifier
        self._cancel_requested = False

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """
        Stop after the batch currently executing.

        A batch in flight is never interrupted; completed batches are kept.
        """
        self._cancel_requested = True
        logger.info("Migration cancellation requested")

    async def run(self, batches: Iterable[Batch]) -> AsyncIterator[BatchExecution]:
        """
        Execute batches in order, yielding each result as it completes.

        Args:
            batches: Planned batches

        Yields:
            BatchExecution per executed batch
        """
        for batch in batches:
            if self._cancel_requested:
                logger.info("Migration cancelled before batch %d", batch.index)
                return
            yield await self.execute_batch(batch)

    async def execute_batch(self, batch: Batch) -> BatchExecution:
        """
        Snapshot, submit and verify one batch.

        Never raises for service failures; they are recorded on the outcome.

        Raises:
            InvalidConfigurationError: If the service rejects its own configuration
        """
        started = time.monotonic()
        sample = batch.sample(self._config.verification_sample_size)
        before = await self._verifier.capture(sample) if self._verifier and sample else {}

        outcome = await self._submit(batch)

        notes: tuple[VerificationNote, ...] = ()
        if self._verifier and before and outcome.status == BatchStatus.CONFIRMED:
            notes = tuple(await self._verifier.verify(batch.index, before))

        duration = time.monotonic() - started
        if self._metrics:
            self._metrics.record_batch(
                outcome.success_count,
                outcome.failure_count,
                duration,
                status=outcome.status.value,
            )
        return BatchExecution(
            batch=batch,
            outcome=outcome,
            notes=notes,
            duration_seconds=duration,
        )

    async def _submit(self, batch: Batch) -> MigrationOutcome:
        total = len(batch)
        with self._tracer.span(
            "ledgershift.executor.batch",
            {ATTR_BATCH_INDEX: batch.index, ATTR_PARTICIPANT_COUNT: total},
        ) as span:
            logger.info("Submitting batch %d with %d participants", batch.index, total)
            try:
                receipt = await asyncio.wait_for(
                    self._service.bulk_migrate(list(batch.participants)),
                    self._config.call_timeout_seconds,
                )
            except InvalidConfigurationError:
                raise
            except TimeoutError as e:
                return self._failed(
                    batch,
                    f"no confirmation within {self._config.call_timeout_seconds}s",
                    cause=e,
                )
            except Exception as e:
                return self._failed(batch, str(e) or type(e).__name__, cause=e)

            outcome = self._outcome_from_receipt(batch, receipt)
            if span is not None:
                span.set_attribute(ATTR_SUCCESS_COUNT, outcome.success_count)
                span.set_attribute(ATTR_TX_REFERENCE, receipt.tx_reference)
            return outcome

    def _outcome_from_receipt(self, batch: Batch, receipt: MigrationReceipt) -> MigrationOutcome:
        total = len(batch)
        if not receipt.confirmed:
            return self._failed(
                batch,
                f"transaction {receipt.tx_reference} reverted",
                status=BatchStatus.REVERTED,
                tx_reference=receipt.tx_reference,
            )

        event = receipt.result_event
        if event is None:
            success = total
        else:
            if event.total_users != total:
                logger.warning(
                    "Batch %d: result event reports %d users, batch has %d",
                    batch.index,
                    event.total_users,
                    total,
                )
            success = max(0, min(event.success_count, total))

        logger.info(
            "Batch %d confirmed in %s: %d/%d migrated",
            batch.index,
            receipt.tx_reference,
            success,
            total,
        )
        return MigrationOutcome(
            batch_index=batch.index,
            total_users=total,
            success_count=success,
            failure_count=total - success,
            tx_reference=receipt.tx_reference,
            status=BatchStatus.CONFIRMED,
            result_event_seen=event is not None,
        )

    def _failed(
        self,
        batch: Batch,
        reason: str,
        status: BatchStatus = BatchStatus.FAILED,
        tx_reference: str | None = None,
        cause: BaseException | None = None,
    ) -> MigrationOutcome:
        error = BatchSubmissionFailedError(batch.index, len(batch), reason)
        code = classify_exception(cause).error_code if cause else error.error_code
        logger.log(
            error.severity.log_level, "%s [%s]; continuing with the next batch", error, code
        )
        return MigrationOutcome.failed(batch, error, status=status, tx_reference=tx_reference)


__all__ = ["MigrationExecutor"]
