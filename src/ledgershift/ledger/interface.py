"""
Collaborator interfaces for the external ledger and the migrated service.

ledgershift never talks to a chain directly. Discovery goes through a
LedgerClient, migration and privileged calls through a MigrationService.
Implementations:
- InMemoryLedger / InMemoryMigrationService: reference implementations
  used in tests and dry runs
- EvmLedger / EvmMigrationService: web3 adapters (``evm`` extra)

Calls may fail; implementations raise LedgerQueryError or ServiceCallError
and callers contain the failure to the unit of work that made the call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ledgershift.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from ledgershift.authorization.models import SignedAuthorization


@dataclass(frozen=True)
class EventFilter:
    """
    Query selector for one event kind over an inclusive block range.

    Attributes:
        event_kind: Name of the event, e.g. "Staked"
        start_block: First block, inclusive (>= 0)
        end_block: Last block, inclusive (>= start_block)
    """

    event_kind: str
    start_block: int
    end_block: int

    def __post_init__(self) -> None:
        if self.start_block < 0:
            raise InvalidConfigurationError(
                f"start_block must be >= 0, got {self.start_block}",
                "start_block",
                self.start_block,
            )
        if self.end_block < self.start_block:
            raise InvalidConfigurationError(
                f"end_block ({self.end_block}) must be >= start_block ({self.start_block})",
                "end_block",
                self.end_block,
            )

    @property
    def block_count(self) -> int:
        return self.end_block - self.start_block + 1

    def chunked(self, max_span: int | None) -> list[EventFilter]:
        """
        Split into consecutive filters of at most max_span blocks.

        Args:
            max_span: Maximum blocks per filter, or None for no splitting

        Returns:
            Filters covering exactly this range, in block order
        """
        if max_span is None or self.block_count <= max_span:
            return [self]
        chunks = []
        start = self.start_block
        while start <= self.end_block:
            end = min(start + max_span - 1, self.end_block)
            chunks.append(EventFilter(self.event_kind, start, end))
            start = end + 1
        return chunks


@dataclass(frozen=True)
class LedgerEvent:
    """
    One historical event returned by a ledger query.

    Attributes:
        event_kind: Name of the event
        block_number: Block the event was emitted in
        fields: Decoded event arguments, e.g. {"user": "0x...", "amount": 10}
        tx_reference: Hash of the emitting transaction, if known
        log_index: Position of the event within its block
    """

    event_kind: str
    block_number: int
    fields: Mapping[str, Any] = field(default_factory=dict)
    tx_reference: str | None = None
    log_index: int = 0

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


class ReceiptStatus(Enum):
    """Final status of a submitted transaction."""

    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class MigrationResultEvent:
    """
    Result event emitted by a bulk migration (BulkMigrationCompleted).

    Attributes:
        success_count: Participants the service reports as migrated
        total_users: Participants the service received
    """

    success_count: int
    total_users: int


@dataclass(frozen=True)
class MigrationReceipt:
    """
    Confirmation of a bulk migration transaction.

    Attributes:
        tx_reference: Transaction hash or other reference
        status: Whether the transaction was confirmed or reverted
        result_event: Parsed result event, None if the service emitted none
        block_number: Block the transaction was included in, if known
    """

    tx_reference: str
    status: ReceiptStatus
    result_event: MigrationResultEvent | None = None
    block_number: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == ReceiptStatus.CONFIRMED


@dataclass(frozen=True)
class ParticipantSnapshot:
    """
    Observable state of one participant as reported by the service.

    Attributes:
        participant: Normalized participant address
        stake_count: Number of open stakes
        pending_rewards: Reward kind to pending amount
        activity: Other observable activity fields (premium flag, daily
            counters, referral data)
    """

    participant: str
    stake_count: int = 0
    pending_rewards: Mapping[str, int] = field(default_factory=dict)
    activity: Mapping[str, Any] = field(default_factory=dict)

    def observable(self) -> dict[str, Any]:
        """
        Flatten into field-name to value pairs for comparison.

        Returns:
            e.g. {"stake_count": 2, "pending_rewards.steps": 10,
            "activity.is_premium": True}
        """
        result: dict[str, Any] = {"stake_count": self.stake_count}
        for name, value in self.pending_rewards.items():
            result[f"pending_rewards.{name}"] = value
        for name, value in self.activity.items():
            result[f"activity.{name}"] = value
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant": self.participant,
            "stake_count": self.stake_count,
            "pending_rewards": dict(self.pending_rewards),
            "activity": dict(self.activity),
        }


@dataclass(frozen=True)
class PrivilegedCallReceipt:
    """
    Confirmation of an accepted privileged call.

    Attributes:
        tx_reference: Transaction hash or other reference
        caller: Normalized caller address
        operation: Canonical signature of the invoked operation
    """

    tx_reference: str
    caller: str
    operation: str


class LedgerClient(ABC):
    """
    Read access to the ledger's historical events.

    Queries may fail individually; implementations raise LedgerQueryError
    and must leave the client usable for later queries.
    """

    @abstractmethod
    async def current_height(self) -> int:
        """Return the latest block number."""
        pass

    @abstractmethod
    async def query(self, event_filter: EventFilter) -> list[LedgerEvent]:
        """
        Return events matching the filter in ledger order.

        Args:
            event_filter: Event kind and inclusive block range

        Raises:
            LedgerQueryError: If the query fails
        """
        pass


class MigrationService(ABC):
    """
    Call interface of the service version being migrated to.

    bulk_migrate must be idempotent per participant: migrating an
    already-migrated participant is a no-op that counts as success.
    """

    @abstractmethod
    async def bulk_migrate(self, participants: Sequence[str]) -> MigrationReceipt:
        """
        Migrate a batch of participants in one transaction.

        Raises:
            ServiceCallError: If the transaction could not be submitted or
                its confirmation could not be obtained
        """
        pass

    @abstractmethod
    async def get_participant_snapshot(self, participant: str) -> ParticipantSnapshot:
        """Read one participant's observable state."""
        pass

    @abstractmethod
    async def get_nonce(self, caller: str) -> int:
        """Return the next authorization nonce the service expects for caller."""
        pass

    @abstractmethod
    async def submit_privileged(
        self,
        caller: str,
        operation: str,
        args: Sequence[Any],
        authorization: SignedAuthorization,
    ) -> PrivilegedCallReceipt:
        """
        Invoke a co-signed privileged operation.

        The service verifies deadline, nonce and signature against the
        selector of ``operation``; on any failure nothing is applied.

        Args:
            caller: Address performing the call
            operation: Canonical signature, e.g. "deposit(uint256,uint256,uint256,bytes)"
            args: The operation's own arguments
            authorization: Authority-signed message and signature

        Raises:
            ExpiredAuthorizationError: Deadline passed
            StaleNonceError: Nonce consumed or out of sequence
            SignatureMismatchError: Signature does not verify
            ServiceCallError: Transport or transaction failure
        """
        pass


__all__ = [
    "EventFilter",
    "LedgerClient",
    "LedgerEvent",
    "MigrationReceipt",
    "MigrationResultEvent",
    "MigrationService",
    "ParticipantSnapshot",
    "PrivilegedCallReceipt",
    "ReceiptStatus",
]
