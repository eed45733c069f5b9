"""
Shared pytest fixtures for the ledgershift tests.

This module provides:
- Ledger and service fixtures (ledger, service, populated_ledger)
- Authorization fixtures (domain, authority, signer, clock)
- Configuration fixtures (scan_config, execution_config, orchestrator_config)
- Repository fixtures (run_repository, sqlite_connection, sqlite_run_repository)
- OpenTelemetry metrics fixtures (metric_reader)

All fixtures are function scoped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from ledgershift.authorization.signer import AuthorizationSigner, LocalAccountAuthority
from ledgershift.config import (
    DomainSeparator,
    ExecutionConfig,
    OrchestratorConfig,
    ScanConfig,
)
from ledgershift.ledger.in_memory import InMemoryLedger, InMemoryMigrationService
from ledgershift.migration import metrics as migration_metrics
from ledgershift.migration.repositories.run_log import InMemoryRunRecordRepository
from tests.fixtures import AUTHORITY_KEY, FrozenClock, make_domain, populate_ledger

if TYPE_CHECKING:
    import aiosqlite

    from ledgershift.migration.repositories.run_log import SQLiteRunRecordRepository

# ============================================================================
# Optional Dependency Checks
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite

    AIOSQLITE_AVAILABLE = True
except ImportError:
    aiosqlite = None  # type: ignore[assignment]

OTEL_METRICS_AVAILABLE = False
try:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import InMemoryMetricReader

    OTEL_METRICS_AVAILABLE = True
except ImportError:
    MeterProvider = None  # type: ignore[assignment, misc]
    InMemoryMetricReader = None  # type: ignore[assignment, misc]

WEB3_AVAILABLE = False
try:
    import web3  # noqa: F401

    WEB3_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")

skip_if_no_otel_metrics = pytest.mark.skipif(
    not OTEL_METRICS_AVAILABLE, reason="opentelemetry-sdk not installed"
)

skip_if_no_web3 = pytest.mark.skipif(not WEB3_AVAILABLE, reason="web3 not installed")


# ============================================================================
# Ledger and Service Fixtures
# ============================================================================


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Provide an empty in-memory ledger at height 10,000."""
    return InMemoryLedger(height=10_000)


@pytest.fixture
def clock() -> FrozenClock:
    """Provide a frozen clock at FIXED_NOW."""
    return FrozenClock()


@pytest.fixture
def domain() -> DomainSeparator:
    """Provide the default test domain."""
    return make_domain()


@pytest.fixture
def authority() -> LocalAccountAuthority:
    """Provide the co-signing authority."""
    return LocalAccountAuthority(AUTHORITY_KEY)


@pytest.fixture
def signer(authority: LocalAccountAuthority, domain: DomainSeparator) -> AuthorizationSigner:
    """Provide a signer for the default domain."""
    return AuthorizationSigner(authority, domain, enable_tracing=False)


@pytest.fixture
def service(
    authority: LocalAccountAuthority,
    domain: DomainSeparator,
    clock: FrozenClock,
) -> InMemoryMigrationService:
    """Provide an in-memory service trusting the test authority."""
    return InMemoryMigrationService(authority.address, domain, clock=clock)


@pytest.fixture
def populated_ledger(
    ledger: InMemoryLedger,
    service: InMemoryMigrationService,
) -> tuple[InMemoryLedger, list[str]]:
    """
    Provide a ledger with 120 recent Staked participants.

    The participants are also registered with the service fixture.

    Returns:
        Tuple of (ledger, participants in emission order)
    """
    participants = populate_ledger(ledger, 120, block_number=9_990, service=service)
    return ledger, participants


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def scan_config() -> ScanConfig:
    """Provide the default scan configuration."""
    return ScanConfig()


@pytest.fixture
def execution_config() -> ExecutionConfig:
    """Provide batches of 50 with a short timeout."""
    return ExecutionConfig(batch_size=50, verification_sample_size=2, call_timeout_seconds=5.0)


@pytest.fixture
def orchestrator_config(
    scan_config: ScanConfig,
    execution_config: ExecutionConfig,
) -> OrchestratorConfig:
    """Provide an orchestrator configuration built from the other fixtures."""
    return OrchestratorConfig(scan=scan_config, execution=execution_config)


# ============================================================================
# Repository Fixtures
# ============================================================================


@pytest.fixture
def run_repository() -> InMemoryRunRecordRepository:
    """Provide an empty in-memory run record repository."""
    return InMemoryRunRecordRepository(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    Provide an in-memory SQLite connection.

    Yields:
        aiosqlite connection, closed after the test
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    async with aiosqlite.connect(":memory:") as db:
        db.row_factory = aiosqlite.Row
        yield db


@pytest_asyncio.fixture
async def sqlite_run_repository(
    sqlite_connection: aiosqlite.Connection,
) -> SQLiteRunRecordRepository:
    """Provide an initialized SQLite run record repository."""
    from ledgershift.migration.repositories.run_log import SQLiteRunRecordRepository

    repo = SQLiteRunRecordRepository(sqlite_connection, enable_tracing=False)
    await repo.initialize()
    return repo


# ============================================================================
# OpenTelemetry Metrics Fixtures
# ============================================================================


@pytest.fixture
def metric_reader() -> Any:
    """
    Provide an InMemoryMetricReader wired to the migration meter.

    The module-level meter is replaced by one from a private provider for
    the test, so readings never depend on the global meter provider.

    Yields:
        InMemoryMetricReader: Reader for inspecting collected metrics.
    """
    if not OTEL_METRICS_AVAILABLE:
        pytest.skip("opentelemetry-sdk not installed")

    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    migration_metrics._meter = provider.get_meter("ledgershift.migration")

    yield reader

    migration_metrics.reset_meter()
    provider.shutdown()
