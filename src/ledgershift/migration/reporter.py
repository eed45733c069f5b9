"""
MigrationReporter - aggregates batch outcomes into a run summary.

Summarizing never fails for lack of data: zero outcomes produce a summary
with zero totals, and a cancelled run reports the batches it completed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID, uuid4

from ledgershift.migration.models import (
    BatchStatus,
    DiscoveryResult,
    MigrationOutcome,
    RunResult,
    RunSummary,
    VerificationNote,
)
from ledgershift.serialization import json_dumps

logger = logging.getLogger(__name__)


class MigrationReporter:
    """
    Builds and renders RunSummary objects.

    Example:
        >>> reporter = MigrationReporter()
        >>> summary = reporter.summarize(outcomes, notes, batches_planned=3)
        >>> print(reporter.render_text(summary))
    """

    def summarize(
        self,
        outcomes: Iterable[MigrationOutcome],
        notes: Iterable[VerificationNote] = (),
        *,
        discovery: DiscoveryResult | None = None,
        batches_planned: int | None = None,
        cancelled: bool = False,
        dry_run: bool = False,
        run_id: UUID | None = None,
        started_at: datetime | None = None,
    ) -> RunSummary:
        """
        Aggregate per-batch outcomes.

        Args:
            outcomes: Outcomes of completed batches, any order
            notes: Verification notes of completed batches
            discovery: Discovery result that produced the batches
            batches_planned: Batches the planner produced; defaults to the
                number of outcomes
            cancelled: Whether the run stopped early
            dry_run: Whether batches were planned but not submitted
            run_id: Run identifier (generated when omitted)
            started_at: Run start time (now when omitted)

        Returns:
            RunSummary whose totals are the sums over ``outcomes``
        """
        ordered = tuple(sorted(outcomes, key=lambda o: o.batch_index))
        note_list = tuple(sorted(notes, key=lambda n: n.batch_index))

        verification_counts: dict[str, int] = {}
        for note in note_list:
            key = note.status.value
            verification_counts[key] = verification_counts.get(key, 0) + 1

        now = datetime.now(UTC)
        summary = RunSummary(
            run_id=run_id or uuid4(),
            total_users=sum(o.total_users for o in ordered),
            total_successes=sum(o.success_count for o in ordered),
            total_failures=sum(o.failure_count for o in ordered),
            participants_discovered=len(discovery.participants) if discovery else 0,
            batches_planned=len(ordered) if batches_planned is None else batches_planned,
            batches_completed=len(ordered),
            batches_failed=sum(
                1 for o in ordered if o.status != BatchStatus.CONFIRMED or o.success_count == 0
            ),
            cancelled=cancelled,
            dry_run=dry_run,
            discovery_status=discovery.status if discovery else None,
            discovery_failures=len(discovery.failures) if discovery else 0,
            verification_counts=verification_counts,
            outcomes=ordered,
            notes=note_list,
            started_at=started_at or now,
            completed_at=now,
        )
        logger.debug(
            "Run %s summarized: %d/%d migrated over %d batches",
            summary.run_id,
            summary.total_successes,
            summary.total_users,
            summary.batches_completed,
        )
        return summary

    def render_text(self, summary: RunSummary) -> str:
        """
        Render a human-readable report.

        Output depends only on the summary, so equal summaries render
        identically.
        """
        lines = [
            f"Migration run {summary.run_id}",
            "Result: DRY RUN" if summary.dry_run else f"Result: {summary.result.value.upper()}",
        ]
        if summary.discovery_status is not None:
            lines.append(
                f"Discovery: {summary.discovery_status.value} "
                f"({summary.participants_discovered} participants, "
                f"{summary.discovery_failures} failed queries)"
            )
        lines.extend(
            [
                f"Total users: {summary.total_users}",
                f"Succeeded: {summary.total_successes}",
                f"Failed: {summary.total_failures}",
                f"Batches: {summary.batches_completed}/{summary.batches_planned} executed, "
                f"{summary.batches_failed} failed",
            ]
        )
        if summary.dry_run:
            lines.append("Dry run: batches were planned but nothing was submitted")
        if summary.cancelled:
            lines.append("Run was cancelled before all batches executed")

        for outcome in summary.outcomes:
            line = (
                f"  batch {outcome.batch_index}: {outcome.status.value} "
                f"{outcome.success_count}/{outcome.total_users}"
            )
            if outcome.tx_reference:
                line += f" tx={outcome.tx_reference}"
            if outcome.error is not None:
                line += f" error={outcome.error.original_error}"
            lines.append(line)

        if summary.verification_counts:
            counts = ", ".join(
                f"{status}={count}" for status, count in sorted(summary.verification_counts.items())
            )
            lines.append(f"Verification: {counts}")
        for note in summary.notes:
            if note.mismatches:
                fields = ", ".join(sorted(note.mismatches))
                lines.append(
                    f"  inconsistent {note.participant} (batch {note.batch_index}): {fields}"
                )

        if not summary.dry_run:
            if summary.result == RunResult.NO_DATA:
                lines.append("No participants found; nothing was migrated")
            elif summary.result == RunResult.DISCOVERY_ERROR:
                lines.append("Discovery failed; the participant set is unknown")
        return "\n".join(lines)

    def to_json(self, summary: RunSummary, *, indent: int | None = 2) -> str:
        """Serialize a summary as JSON."""
        return json_dumps(summary.to_dict(), indent=indent)


__all__ = ["MigrationReporter"]
