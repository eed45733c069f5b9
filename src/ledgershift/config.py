"""
Configuration for ledgershift runs and authorizations.

All configuration is held in frozen dataclasses that validate themselves on
construction and are passed explicitly into each component; there is no
process-wide mutable state. Invalid values raise InvalidConfigurationError,
which aborts a run before any external call is made.

Example:
    >>> config = OrchestratorConfig(
    ...     scan=ScanConfig(windows=(1_000, 10_000)),
    ...     execution=ExecutionConfig(batch_size=25),
    ... )
    >>> OrchestratorConfig.from_dict(config.to_dict()) == config
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eth_utils import to_checksum_address

from ledgershift.exceptions import InvalidAddressError, InvalidConfigurationError
from ledgershift.participants import normalize_address

DEFAULT_TRACKED_EVENTS: tuple[str, ...] = (
    "Staked",
    "Unstaked",
    "ActivityRecorded",
    "RewardsClaimed",
    "StakingRewardsClaimed",
)
"""Event kinds whose emitters count as participants."""

DEFAULT_SCAN_WINDOWS: tuple[int, ...] = (1_000, 10_000, 100_000)
"""Lookback windows in blocks, tried narrowest first."""

DEFAULT_BATCH_SIZE = 50
DEFAULT_VERIFICATION_SAMPLE_SIZE = 3
DEFAULT_CALL_TIMEOUT_SECONDS = 120.0
DEFAULT_AUTHORIZATION_TTL_SECONDS = 86_400


@dataclass(frozen=True)
class ScanConfig:
    """
    Participant discovery settings.

    Attributes:
        windows: Lookback sizes in blocks, strictly increasing. Each window
            covers ``[max(0, height - lookback), height]``.
        tracked_events: Event kinds to query in every window.
        participant_field: Event field holding the participant address.
        max_block_span: Widest range sent in a single query. Wider windows
            are split into chunks. None sends each window as one query.
        fallback_participants: Operator-supplied addresses used only when
            every window is empty (degraded mode).
    """

    windows: tuple[int, ...] = DEFAULT_SCAN_WINDOWS
    tracked_events: tuple[str, ...] = DEFAULT_TRACKED_EVENTS
    participant_field: str = "user"
    max_block_span: int | None = None
    fallback_participants: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        windows = tuple(self.windows)
        if not windows:
            raise InvalidConfigurationError("at least one scan window is required", "windows")
        if any(w <= 0 for w in windows):
            raise InvalidConfigurationError(
                f"scan windows must be positive, got {windows}", "windows", windows
            )
        if any(later <= earlier for earlier, later in zip(windows, windows[1:], strict=False)):
            raise InvalidConfigurationError(
                f"scan windows must be strictly increasing, got {windows}", "windows", windows
            )
        tracked = tuple(self.tracked_events)
        if not tracked:
            raise InvalidConfigurationError(
                "at least one tracked event kind is required", "tracked_events"
            )
        if not self.participant_field:
            raise InvalidConfigurationError(
                "participant_field must not be empty", "participant_field"
            )
        if self.max_block_span is not None and self.max_block_span <= 0:
            raise InvalidConfigurationError(
                f"max_block_span must be positive, got {self.max_block_span}",
                "max_block_span",
                self.max_block_span,
            )
        try:
            fallback = tuple(dict.fromkeys(normalize_address(a) for a in self.fallback_participants))
        except InvalidAddressError as e:
            raise InvalidConfigurationError(
                f"invalid fallback participant: {e.value!r}", "fallback_participants", e.value
            ) from e

        # Frozen: normalize collections through object.__setattr__
        object.__setattr__(self, "windows", windows)
        object.__setattr__(self, "tracked_events", tracked)
        object.__setattr__(self, "fallback_participants", fallback)

    def to_dict(self) -> dict[str, Any]:
        return {
            "windows": list(self.windows),
            "tracked_events": list(self.tracked_events),
            "participant_field": self.participant_field,
            "max_block_span": self.max_block_span,
            "fallback_participants": list(self.fallback_participants),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanConfig:
        return cls(
            windows=tuple(data.get("windows", DEFAULT_SCAN_WINDOWS)),
            tracked_events=tuple(data.get("tracked_events", DEFAULT_TRACKED_EVENTS)),
            participant_field=data.get("participant_field", "user"),
            max_block_span=data.get("max_block_span"),
            fallback_participants=tuple(data.get("fallback_participants", ())),
        )


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Batch execution and verification settings.

    Attributes:
        batch_size: Participants per bulk migration call.
        verification_sample_size: Participants per batch snapshotted before
            and after migration. Zero disables verification.
        verification_fields: Observable fields compared by the verifier.
            Empty compares every field present in either snapshot.
        call_timeout_seconds: Bound on every external call.
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    verification_sample_size: int = DEFAULT_VERIFICATION_SAMPLE_SIZE
    verification_fields: tuple[str, ...] = ()
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise InvalidConfigurationError(
                f"batch_size must be positive, got {self.batch_size}",
                "batch_size",
                self.batch_size,
            )
        if self.verification_sample_size < 0:
            raise InvalidConfigurationError(
                f"verification_sample_size must be >= 0, got {self.verification_sample_size}",
                "verification_sample_size",
                self.verification_sample_size,
            )
        if self.call_timeout_seconds <= 0:
            raise InvalidConfigurationError(
                f"call_timeout_seconds must be positive, got {self.call_timeout_seconds}",
                "call_timeout_seconds",
                self.call_timeout_seconds,
            )
        object.__setattr__(self, "verification_fields", tuple(self.verification_fields))

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "verification_sample_size": self.verification_sample_size,
            "verification_fields": list(self.verification_fields),
            "call_timeout_seconds": self.call_timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionConfig:
        return cls(
            batch_size=data.get("batch_size", DEFAULT_BATCH_SIZE),
            verification_sample_size=data.get(
                "verification_sample_size", DEFAULT_VERIFICATION_SAMPLE_SIZE
            ),
            verification_fields=tuple(data.get("verification_fields", ())),
            call_timeout_seconds=data.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT_SECONDS),
        )


@dataclass(frozen=True)
class DomainSeparator:
    """
    EIP-712 domain binding signatures to one deployment.

    A signature produced under one domain never verifies under another,
    so changing any field here invalidates every outstanding authorization.

    Attributes:
        name: Service name, e.g. "MOVINEarnV2".
        version: Protocol version string.
        chain_id: Chain identifier.
        verifying_contract: Address of the verifying service contract.
    """

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidConfigurationError("domain name must not be empty", "name")
        if not self.version:
            raise InvalidConfigurationError("domain version must not be empty", "version")
        if self.chain_id <= 0:
            raise InvalidConfigurationError(
                f"chain_id must be positive, got {self.chain_id}", "chain_id", self.chain_id
            )
        try:
            contract = normalize_address(self.verifying_contract)
        except InvalidAddressError as e:
            raise InvalidConfigurationError(
                f"invalid verifying contract: {self.verifying_contract!r}",
                "verifying_contract",
                self.verifying_contract,
            ) from e
        object.__setattr__(self, "verifying_contract", contract)

    def to_eip712(self) -> dict[str, Any]:
        """Domain as the ``domain`` member of EIP-712 typed data."""
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chain_id": self.chain_id,
            "verifying_contract": self.verifying_contract,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainSeparator:
        return cls(
            name=data["name"],
            version=data["version"],
            chain_id=data["chain_id"],
            verifying_contract=data["verifying_contract"],
        )


@dataclass(frozen=True)
class AuthorizationConfig:
    """
    Settings for co-signed privileged calls.

    Attributes:
        domain: Domain separator of the verifying deployment.
        ttl_seconds: Lifetime of a fresh authorization.
        call_timeout_seconds: Bound on nonce lookups and submissions.
    """

    domain: DomainSeparator
    ttl_seconds: int = DEFAULT_AUTHORIZATION_TTL_SECONDS
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise InvalidConfigurationError(
                f"ttl_seconds must be positive, got {self.ttl_seconds}",
                "ttl_seconds",
                self.ttl_seconds,
            )
        if self.call_timeout_seconds <= 0:
            raise InvalidConfigurationError(
                f"call_timeout_seconds must be positive, got {self.call_timeout_seconds}",
                "call_timeout_seconds",
                self.call_timeout_seconds,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain.to_dict(),
            "ttl_seconds": self.ttl_seconds,
            "call_timeout_seconds": self.call_timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationConfig:
        return cls(
            domain=DomainSeparator.from_dict(data["domain"]),
            ttl_seconds=data.get("ttl_seconds", DEFAULT_AUTHORIZATION_TTL_SECONDS),
            call_timeout_seconds=data.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT_SECONDS),
        )


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Complete configuration for one migration run.

    Attributes:
        scan: Discovery settings.
        execution: Batch execution and verification settings.
    """

    scan: ScanConfig = field(default_factory=ScanConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan": self.scan.to_dict(),
            "execution": self.execution.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrchestratorConfig:
        return cls(
            scan=ScanConfig.from_dict(data.get("scan", {})),
            execution=ExecutionConfig.from_dict(data.get("execution", {})),
        )


__all__ = [
    "DEFAULT_AUTHORIZATION_TTL_SECONDS",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CALL_TIMEOUT_SECONDS",
    "DEFAULT_SCAN_WINDOWS",
    "DEFAULT_TRACKED_EVENTS",
    "DEFAULT_VERIFICATION_SAMPLE_SIZE",
    "AuthorizationConfig",
    "DomainSeparator",
    "ExecutionConfig",
    "OrchestratorConfig",
    "ScanConfig",
]
