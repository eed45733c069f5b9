"""
In-memory ledger and migration service.

These implementations model the behavior ledgershift relies on from real
collaborators: ordered historical events, an idempotent bulk migration
that may emit a BulkMigrationCompleted result event, per-caller nonces,
and EIP-712 verification of co-signed privileged calls. Failures, reverts,
delays and state drift can be injected per call.

They are used in tests and for dry runs, and document the contract
expected from production adapters.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from ledgershift.authorization.models import AuthorizationMessage, SignedAuthorization
from ledgershift.authorization.signer import function_selector, verify_authorization
from ledgershift.config import DomainSeparator
from ledgershift.exceptions import (
    ExpiredAuthorizationError,
    LedgerQueryError,
    ServiceCallError,
    StaleNonceError,
)
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
from ledgershift.participants import normalize_address

logger = logging.getLogger(__name__)


class InMemoryLedger(LedgerClient):
    """
    Ledger holding events in memory.

    Args:
        height: Initial block height
        participant_field: Field emit() stores the participant under

    Example:
        >>> ledger = InMemoryLedger(height=10_000)
        >>> ledger.emit("Staked", participant="0xabc...", block_number=9_950)
        >>> ledger.fail_queries("Unstaked")
    """

    def __init__(self, height: int = 0, participant_field: str = "user") -> None:
        self._height = height
        self._participant_field = participant_field
        self._events: list[LedgerEvent] = []
        self._query_failures: dict[str, Exception] = {}
        self._height_error: Exception | None = None
        self._max_block_span: int | None = None
        self._lock = asyncio.Lock()
        self.queries: list[EventFilter] = []

    def emit(
        self,
        event_kind: str,
        participant: str | None = None,
        block_number: int | None = None,
        **fields: Any,
    ) -> LedgerEvent:
        """
        Append an event, raising the height to its block if needed.

        Args:
            event_kind: Event name
            participant: Stored under the participant field when given
            block_number: Block of the event; defaults to the current height
            **fields: Additional event fields
        """
        block = self._height if block_number is None else block_number
        self._height = max(self._height, block)
        if participant is not None:
            fields[self._participant_field] = participant
        event = LedgerEvent(
            event_kind=event_kind,
            block_number=block,
            fields=fields,
            tx_reference=f"0x{len(self._events):064x}",
            log_index=len(self._events),
        )
        self._events.append(event)
        return event

    def set_height(self, height: int) -> None:
        self._height = height

    def fail_queries(self, event_kind: str, error: Exception | None = None) -> None:
        """Make every query for event_kind raise."""
        self._query_failures[event_kind] = error or LedgerQueryError(
            f"query for {event_kind} rejected", event_kind=event_kind
        )

    def limit_block_range(self, max_span: int | None) -> None:
        """Reject queries spanning more than max_span blocks, like a range-limited provider."""
        self._max_block_span = max_span

    def fail_height(self, error: Exception | None = None) -> None:
        """Make current_height() raise."""
        self._height_error = error or LedgerQueryError("height lookup rejected")

    def clear_failures(self) -> None:
        self._query_failures.clear()
        self._height_error = None
        self._max_block_span = None

    async def current_height(self) -> int:
        if self._height_error is not None:
            raise self._height_error
        return self._height

    async def query(self, event_filter: EventFilter) -> list[LedgerEvent]:
        async with self._lock:
            self.queries.append(event_filter)
            error = self._query_failures.get(event_filter.event_kind)
            if error is not None:
                raise error
            span = event_filter.end_block - event_filter.start_block + 1
            if self._max_block_span is not None and span > self._max_block_span:
                raise LedgerQueryError(
                    f"block range of {span} exceeds limit of {self._max_block_span}",
                    event_kind=event_filter.event_kind,
                    start_block=event_filter.start_block,
                    end_block=event_filter.end_block,
                )
            matches = [
                event
                for event in self._events
                if event.event_kind == event_filter.event_kind
                and event_filter.start_block <= event.block_number <= event_filter.end_block
            ]
            return sorted(matches, key=lambda e: (e.block_number, e.log_index))


class InMemoryMigrationService(MigrationService):
    """
    Migration service holding participant state in memory.

    Participants registered with register_participant() hold legacy state.
    bulk_migrate() copies legacy state into the migrated store; migrating
    an already-migrated participant is a no-op counted as success.

    Args:
        authority: Address whose signatures authorize privileged calls
        domain: Domain separator privileged calls are verified under
        emit_result_event: Whether receipts carry a MigrationResultEvent
        clock: Source of the current Unix time
    """

    BULK_MIGRATE = "bulkMigrateUserData(address[])"

    def __init__(
        self,
        authority: str | None = None,
        domain: DomainSeparator | None = None,
        *,
        emit_result_event: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authority = normalize_address(authority) if authority else None
        self._domain = domain
        self._emit_result_event = emit_result_event
        self._clock = clock
        self._legacy: dict[str, ParticipantSnapshot] = {}
        self._migrated: dict[str, ParticipantSnapshot] = {}
        self._drift: dict[str, dict[str, Any]] = {}
        self._rejected: set[str] = set()
        self._snapshot_failures: set[str] = set()
        self._nonces: dict[str, int] = {}
        self._failing_calls: dict[int, Exception] = {}
        self._reverting_calls: set[int] = set()
        self._delay_seconds = 0.0
        self._call_count = 0
        self._lock = asyncio.Lock()
        self.migration_calls: list[list[str]] = []
        self.privileged_calls: list[tuple[str, str, tuple[Any, ...]]] = []

    # ------------------------------------------------------------------
    # Setup and fault injection
    # ------------------------------------------------------------------

    def register_participant(
        self,
        address: str,
        stake_count: int = 0,
        pending_rewards: dict[str, int] | None = None,
        activity: dict[str, Any] | None = None,
    ) -> ParticipantSnapshot:
        """Give a participant legacy state awaiting migration."""
        key = normalize_address(address)
        snapshot = ParticipantSnapshot(
            participant=key,
            stake_count=stake_count,
            pending_rewards=dict(pending_rewards or {}),
            activity=dict(activity or {}),
        )
        self._legacy[key] = snapshot
        return snapshot

    def drift_on_migrate(self, address: str, **changes: Any) -> None:
        """Alter a participant's state when it is migrated (stake_count, pending_rewards, activity)."""
        self._drift[normalize_address(address)] = changes

    def reject_participant(self, address: str) -> None:
        """Make the service skip a participant, reporting it as not migrated."""
        self._rejected.add(normalize_address(address))

    def fail_snapshots(self, address: str) -> None:
        self._snapshot_failures.add(normalize_address(address))

    def fail_call(self, call_number: int, error: Exception | None = None) -> None:
        """Make the n-th bulk_migrate call (1-based) raise before any effect."""
        self._failing_calls[call_number] = error or ServiceCallError(
            f"bulk migration call {call_number} rejected", operation=self.BULK_MIGRATE
        )

    def revert_call(self, call_number: int) -> None:
        """Make the n-th bulk_migrate call (1-based) confirm as reverted."""
        self._reverting_calls.add(call_number)

    def set_delay(self, seconds: float) -> None:
        """Delay every bulk_migrate call, for timeout handling."""
        self._delay_seconds = seconds

    def set_nonce(self, caller: str, nonce: int) -> None:
        self._nonces[normalize_address(caller)] = nonce

    def is_migrated(self, address: str) -> bool:
        return normalize_address(address) in self._migrated

    @property
    def migrated_count(self) -> int:
        return len(self._migrated)

    # ------------------------------------------------------------------
    # MigrationService
    # ------------------------------------------------------------------

    async def bulk_migrate(self, participants: Sequence[str]) -> MigrationReceipt:
        async with self._lock:
            self._call_count += 1
            call_number = self._call_count
            self.migration_calls.append(list(participants))

        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)

        error = self._failing_calls.get(call_number)
        if error is not None:
            raise error

        tx_reference = f"0x{call_number:064x}"
        if call_number in self._reverting_calls:
            return MigrationReceipt(tx_reference=tx_reference, status=ReceiptStatus.REVERTED)

        async with self._lock:
            success_count = 0
            for participant in participants:
                key = normalize_address(participant)
                if key in self._rejected:
                    continue
                if key not in self._migrated:
                    self._migrated[key] = self._migrate(key)
                success_count += 1

        result_event = None
        if self._emit_result_event:
            result_event = MigrationResultEvent(
                success_count=success_count, total_users=len(participants)
            )
        return MigrationReceipt(
            tx_reference=tx_reference,
            status=ReceiptStatus.CONFIRMED,
            result_event=result_event,
            block_number=call_number,
        )

    def _migrate(self, key: str) -> ParticipantSnapshot:
        state = self._legacy.get(key) or ParticipantSnapshot(participant=key)
        changes = self._drift.get(key)
        if changes:
            state = dataclasses.replace(state, **changes)
        return state

    async def get_participant_snapshot(self, participant: str) -> ParticipantSnapshot:
        key = normalize_address(participant)
        if key in self._snapshot_failures:
            raise ServiceCallError(f"snapshot of {key} unavailable", operation="snapshot")
        return (
            self._migrated.get(key) or self._legacy.get(key) or ParticipantSnapshot(participant=key)
        )

    async def get_nonce(self, caller: str) -> int:
        return self._nonces.get(normalize_address(caller), 0)

    async def submit_privileged(
        self,
        caller: str,
        operation: str,
        args: Sequence[Any],
        authorization: SignedAuthorization,
    ) -> PrivilegedCallReceipt:
        if self._authority is None or self._domain is None:
            raise ServiceCallError("privileged calls are not configured", operation=operation)

        key = normalize_address(caller)
        message = authorization.message
        async with self._lock:
            now = int(self._clock())
            if now > message.deadline:
                raise ExpiredAuthorizationError(
                    deadline=message.deadline, checked_at=now, caller=key, nonce=message.nonce
                )

            expected_nonce = self._nonces.get(key, 0)
            if message.nonce != expected_nonce:
                raise StaleNonceError(message.nonce, expected_nonce, caller=key)

            # Verify against the operation actually invoked, not the one claimed
            invoked = AuthorizationMessage(
                caller=key,
                selector=function_selector(operation),
                nonce=message.nonce,
                deadline=message.deadline,
            )
            verify_authorization(self._domain, invoked, authorization.signature, self._authority)

            self._nonces[key] = expected_nonce + 1
            self.privileged_calls.append((key, operation, tuple(args)))
            tx_reference = f"0x{len(self.privileged_calls):064x}"

        logger.debug("Accepted %s for %s with nonce %d", operation, key, message.nonce)
        return PrivilegedCallReceipt(tx_reference=tx_reference, caller=key, operation=operation)


__all__ = [
    "InMemoryLedger",
    "InMemoryMigrationService",
]
