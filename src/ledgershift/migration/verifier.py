"""
MigrationVerifier - compares sampled participants before and after migration.

Verification is a diagnostic aid, not a correctness gate. Inconsistencies
are logged and recorded as VerificationInconsistentError on the note;
nothing is corrected and the run is never rolled back.

Each sampled participant gets one note:
- consistent: every compared field is unchanged
- inconsistent: at least one field differs (mismatches lists them)
- unavailable: no pre-migration snapshot, or the post-migration read failed
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from ledgershift.config import DEFAULT_CALL_TIMEOUT_SECONDS
from ledgershift.exceptions import VerificationInconsistentError
from ledgershift.ledger.interface import MigrationService, ParticipantSnapshot
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.migration.models import VerificationNote, VerificationStatus
from ledgershift.observability import ATTR_BATCH_INDEX, ATTR_PARTICIPANT_COUNT, Tracer, create_tracer

logger = logging.getLogger(__name__)

_MISSING = "<missing>"


class MigrationVerifier:
    """
    Snapshots sampled participants and compares their observable state.

    Example:
        >>> verifier = MigrationVerifier(service)
        >>> before = await verifier.capture(batch.sample(3))
        >>> await service.bulk_migrate(batch.participants)
        >>> notes = await verifier.verify(batch.index, before)
    """

    def __init__(
        self,
        service: MigrationService,
        fields: Sequence[str] = (),
        *,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the verifier.

        Args:
            service: Service to read participant snapshots from
            fields: Observable field names to compare; empty compares all
            call_timeout_seconds: Bound on each snapshot read
            metrics: Optional metrics recorder
            tracer: Optional custom Tracer
            enable_tracing: Whether to create a default tracer when none is given
        """
        self._service = service
        self._fields = tuple(fields)
        self._timeout = call_timeout_seconds
        self._metrics = metrics
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def capture(self, participants: Sequence[str]) -> dict[str, ParticipantSnapshot | None]:
        """
        Read pre-migration snapshots.

        A failed read is logged and stored as None, which later yields an
        "unavailable" note for that participant.
        """
        snapshots: dict[str, ParticipantSnapshot | None] = {}
        for participant in participants:
            snapshots[participant] = await self._read(participant, "pre-migration")
        return snapshots

    async def verify(
        self,
        batch_index: int,
        before: dict[str, ParticipantSnapshot | None],
    ) -> list[VerificationNote]:
        """
        Re-read each sampled participant and compare against its snapshot.

        Args:
            batch_index: Batch the participants were migrated in
            before: Snapshots returned by capture()

        Returns:
            One note per sampled participant, in sample order
        """
        notes: list[VerificationNote] = []
        with self._tracer.span(
            "ledgershift.verifier.verify",
            {ATTR_BATCH_INDEX: batch_index, ATTR_PARTICIPANT_COUNT: len(before)},
        ):
            for participant, snapshot in before.items():
                note = await self._verify_one(batch_index, participant, snapshot)
                notes.append(note)
                if self._metrics:
                    self._metrics.record_verification(note.status.value)
        return notes

    async def _verify_one(
        self,
        batch_index: int,
        participant: str,
        before: ParticipantSnapshot | None,
    ) -> VerificationNote:
        if before is None:
            return VerificationNote(
                participant=participant,
                batch_index=batch_index,
                status=VerificationStatus.UNAVAILABLE,
                detail="no pre-migration snapshot",
            )

        after = await self._read(participant, "post-migration")
        if after is None:
            return VerificationNote(
                participant=participant,
                batch_index=batch_index,
                status=VerificationStatus.UNAVAILABLE,
                detail="post-migration snapshot could not be read",
            )

        mismatches = self.compare(before, after)
        if not mismatches:
            logger.debug("Participant %s consistent after batch %d", participant, batch_index)
            return VerificationNote(
                participant=participant,
                batch_index=batch_index,
                status=VerificationStatus.CONSISTENT,
            )

        error = VerificationInconsistentError(participant, mismatches)
        logger.log(error.severity.log_level, "Batch %d: %s", batch_index, error)
        return VerificationNote(
            participant=participant,
            batch_index=batch_index,
            status=VerificationStatus.INCONSISTENT,
            mismatches=mismatches,
            error=error,
        )

    def compare(
        self,
        before: ParticipantSnapshot,
        after: ParticipantSnapshot,
    ) -> dict[str, tuple[Any, Any]]:
        """
        Return field name to (before, after) for every differing field.

        A field present on only one side counts as a mismatch with the
        other side reported as "<missing>".
        """
        old = before.observable()
        new = after.observable()
        names = self._fields or tuple(sorted(set(old) | set(new)))
        return {
            name: (old.get(name, _MISSING), new.get(name, _MISSING))
            for name in names
            if old.get(name, _MISSING) != new.get(name, _MISSING)
        }

    async def _read(self, participant: str, phase: str) -> ParticipantSnapshot | None:
        try:
            return await asyncio.wait_for(
                self._service.get_participant_snapshot(participant), self._timeout
            )
        except Exception as e:
            logger.warning(
                "Could not read %s snapshot of %s: %s",
                phase,
                participant,
                str(e) or type(e).__name__,
            )
            return None


__all__ = ["MigrationVerifier"]
