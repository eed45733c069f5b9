"""
Unit tests for EventScanner.

Tests cover:
- Progressive windows anchored at a single height read
- Stopping at the first non-empty window
- Normalization and deduplication across event kinds
- Partial discovery when individual queries fail
- Fallback (degraded) mode and EMPTY/ERROR outcomes
- Chunked queries for providers with block span limits
- Deterministic scan_range()
- Metrics and tracing
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ledgershift.config import ScanConfig
from ledgershift.exceptions import InvalidConfigurationError
from ledgershift.ledger.in_memory import InMemoryLedger
from ledgershift.ledger.interface import EventFilter
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.migration.models import DiscoveryStatus, ScanWindow
from ledgershift.migration.scanner import EventScanner
from ledgershift.observability import MockTracer
from tests.fixtures import participant_address, participant_addresses, populate_ledger

WINDOWS = (1_000, 10_000, 100_000)


def make_scanner(ledger: InMemoryLedger, **config: object) -> EventScanner:
    config.setdefault("windows", WINDOWS)
    return EventScanner(ledger, ScanConfig(**config), enable_tracing=False)  # type: ignore[arg-type]


class TestScanWindow:
    """Tests for ScanWindow.anchored()."""

    def test_anchored(self) -> None:
        assert ScanWindow.anchored(10_000, 1_000) == ScanWindow(1_000, 9_000, 10_000)

    def test_clamped_at_genesis(self) -> None:
        assert ScanWindow.anchored(500, 1_000).start_block == 0


class TestDiscover:
    """Tests for EventScanner.discover()."""

    @pytest.mark.asyncio
    async def test_found_in_first_window(self, ledger: InMemoryLedger) -> None:
        expected = populate_ledger(ledger, 5, block_number=9_500)

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.FOUND
        assert result.participants.to_list() == expected
        assert result.window == ScanWindow(1_000, 9_000, 10_000)
        assert result.windows_scanned == 1
        assert result.height == 10_000
        assert not result.partial

    @pytest.mark.asyncio
    async def test_widens_until_found(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 3, block_number=5_000)

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.FOUND
        assert len(result.participants) == 3
        assert result.window is not None
        assert result.window.lookback == 10_000
        assert result.windows_scanned == 2

    @pytest.mark.asyncio
    async def test_stops_at_first_non_empty_window(self, ledger: InMemoryLedger) -> None:
        """Older participants outside the first productive window are not included."""
        recent = populate_ledger(ledger, 2, block_number=9_900)
        populate_ledger(ledger, 2, block_number=2_000, offset=10)

        result = await make_scanner(ledger).discover()

        assert result.participants.to_list() == recent

    @pytest.mark.asyncio
    async def test_windows_share_one_height(self, ledger: InMemoryLedger) -> None:
        ledger.set_height(50_000)

        await make_scanner(ledger, windows=(1_000, 10_000)).discover()

        ends = {q.end_block for q in ledger.queries}
        assert ends == {50_000}
        starts = sorted({q.start_block for q in ledger.queries}, reverse=True)
        assert starts == [49_000, 40_000]

    @pytest.mark.asyncio
    async def test_stops_widening_at_genesis(self) -> None:
        ledger = InMemoryLedger(height=500)

        result = await make_scanner(ledger, tracked_events=("Staked",)).discover()

        assert result.status == DiscoveryStatus.EMPTY
        assert result.windows_scanned == 1
        assert len(ledger.queries) == 1

    @pytest.mark.asyncio
    async def test_deduplicates_across_event_kinds(self, ledger: InMemoryLedger) -> None:
        address = participant_address(9)
        ledger.emit("Staked", participant=address, block_number=9_500)
        ledger.emit("Unstaked", participant=address.upper().replace("0X", "0x"), block_number=9_600)
        ledger.emit("RewardsClaimed", participant=participant_address(1), block_number=9_700)

        result = await make_scanner(ledger).discover()

        assert result.participants.to_list() == [address, participant_address(1)]

    @pytest.mark.asyncio
    async def test_skips_events_without_valid_participant(self, ledger: InMemoryLedger) -> None:
        ledger.emit("Staked", block_number=9_500, amount=1)
        ledger.emit("Staked", participant="0xnot-an-address", block_number=9_500)
        ledger.emit("Staked", participant=participant_address(0), block_number=9_500)

        result = await make_scanner(ledger).discover()

        assert result.participants.to_list() == [participant_address(0)]

    @pytest.mark.asyncio
    async def test_custom_participant_field(self) -> None:
        ledger = InMemoryLedger(height=10_000, participant_field="account")
        ledger.emit("Staked", participant=participant_address(0), block_number=9_500)

        result = await make_scanner(ledger, participant_field="account").discover()

        assert len(result.participants) == 1


class TestPartialDiscovery:
    """Tests for failed queries during discovery."""

    @pytest.mark.asyncio
    async def test_failed_kind_counts_as_zero_results(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 2, event_kind="Staked", block_number=9_500)
        populate_ledger(ledger, 2, event_kind="Unstaked", block_number=9_500, offset=5)
        ledger.fail_queries("Unstaked")

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.FOUND
        assert result.participants.to_list() == participant_addresses(2)
        assert result.partial
        assert [f.event_kind for f in result.failures] == ["Unstaked"]
        assert result.failures[0].start_block == 9_000

    @pytest.mark.asyncio
    async def test_all_queries_failing_is_error(self, ledger: InMemoryLedger) -> None:
        for kind in ScanConfig().tracked_events:
            ledger.fail_queries(kind)

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.ERROR
        assert len(result.participants) == 0
        assert result.windows_scanned == 2
        assert len(result.failures) == result.queries == 10

    @pytest.mark.asyncio
    async def test_height_failure(self, ledger: InMemoryLedger) -> None:
        ledger.fail_height()

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.ERROR
        assert result.height is None
        assert result.failures[0].event_kind == "height"
        assert ledger.queries == []

    @pytest.mark.asyncio
    async def test_height_failure_uses_fallback(self, ledger: InMemoryLedger) -> None:
        ledger.fail_height()
        fallback = tuple(participant_addresses(2))

        result = await make_scanner(ledger, fallback_participants=fallback).discover()

        assert result.status == DiscoveryStatus.FALLBACK
        assert result.participants.to_list() == list(fallback)

    @pytest.mark.asyncio
    async def test_query_timeout_is_recorded(self, ledger: InMemoryLedger) -> None:
        async def slow_query(event_filter: EventFilter) -> list:
            await asyncio.sleep(10)
            return []

        ledger.query = slow_query  # type: ignore[method-assign]
        scanner = EventScanner(
            ledger,
            ScanConfig(windows=(1_000,), tracked_events=("Staked",)),
            call_timeout_seconds=0.01,
            enable_tracing=False,
        )

        result = await scanner.discover()

        assert result.status == DiscoveryStatus.ERROR
        assert result.failures[0].original_error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_unreadable_window_is_error_not_empty(self) -> None:
        """Narrow windows succeed, the widest exceeds the provider's range limit."""
        ledger = InMemoryLedger(height=200_000)
        ledger.emit("Staked", participant_address(0), block_number=150_000)
        ledger.limit_block_range(20_000)

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.ERROR
        assert len(result.participants) == 0
        assert result.windows_scanned == 3
        assert result.queries == 15
        assert len(result.failures) == 5
        assert {f.start_block for f in result.failures} == {100_000}

    @pytest.mark.asyncio
    async def test_some_failed_queries_in_every_window_stay_empty(
        self, ledger: InMemoryLedger
    ) -> None:
        ledger.fail_queries("Unstaked")

        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.EMPTY
        assert result.partial

    @pytest.mark.asyncio
    async def test_chunking_recovers_range_limited_window(self) -> None:
        ledger = InMemoryLedger(height=200_000)
        ledger.emit("Staked", participant_address(0), block_number=150_000)
        ledger.limit_block_range(20_000)

        result = await make_scanner(ledger, max_block_span=20_000).discover()

        assert result.status == DiscoveryStatus.FOUND
        assert result.participants.to_list() == [participant_address(0)]
        assert not result.partial

    @pytest.mark.asyncio
    async def test_invalid_configuration_from_query_aborts(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 2, block_number=9_500)
        ledger.fail_queries(
            "Unstaked", InvalidConfigurationError("event 'Unstaked' is not in the contract ABI")
        )

        with pytest.raises(InvalidConfigurationError, match="not in the contract ABI"):
            await make_scanner(ledger).discover()

    @pytest.mark.asyncio
    async def test_invalid_configuration_from_height_aborts(self, ledger: InMemoryLedger) -> None:
        ledger.fail_height(InvalidConfigurationError("bad endpoint"))

        with pytest.raises(InvalidConfigurationError):
            await make_scanner(ledger, fallback_participants=(participant_address(0),)).discover()

    @pytest.mark.asyncio
    async def test_failed_query_logged_at_its_severity(
        self, ledger: InMemoryLedger, caplog: pytest.LogCaptureFixture
    ) -> None:
        ledger.fail_queries("Unstaked")

        with caplog.at_level("WARNING", logger="ledgershift.migration.scanner"):
            await make_scanner(ledger).discover()

        records = [r for r in caplog.records if "LEDGER_QUERY_FAILED" in r.getMessage()]
        assert records
        assert {r.levelname for r in records} == {"WARNING"}


class TestFallback:
    """Tests for the operator fallback list."""

    @pytest.mark.asyncio
    async def test_empty_without_fallback(self, ledger: InMemoryLedger) -> None:
        """The 10,000-block window reaches genesis, so the last window is skipped."""
        result = await make_scanner(ledger).discover()

        assert result.status == DiscoveryStatus.EMPTY
        assert len(result.participants) == 0
        assert result.windows_scanned == 2
        assert not result.partial

    @pytest.mark.asyncio
    async def test_fallback_when_every_window_is_empty(
        self,
        ledger: InMemoryLedger,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        fallback = (participant_address(7), participant_address(8))

        with caplog.at_level("WARNING"):
            result = await make_scanner(ledger, fallback_participants=fallback).discover()

        assert result.status == DiscoveryStatus.FALLBACK
        assert result.participants.to_list() == list(fallback)
        assert "DEGRADED MODE" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_unused_when_found(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 1, block_number=9_999)
        result = await make_scanner(
            ledger, fallback_participants=(participant_address(7),)
        ).discover()
        assert result.status == DiscoveryStatus.FOUND
        assert participant_address(7) not in result.participants


class TestChunking:
    """Tests for max_block_span."""

    @pytest.mark.asyncio
    async def test_window_is_split_into_chunks(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 1, block_number=2_000)

        result = await make_scanner(
            ledger, windows=(10_000,), tracked_events=("Staked",), max_block_span=4_000
        ).discover()

        assert [(q.start_block, q.end_block) for q in ledger.queries] == [
            (0, 3_999),
            (4_000, 7_999),
            (8_000, 10_000),
        ]
        assert result.queries == 3
        assert len(result.participants) == 1


class TestScanRange:
    """Tests for EventScanner.scan_range()."""

    @pytest.mark.asyncio
    async def test_same_range_twice_is_identical(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 30, block_number=4_000)
        populate_ledger(ledger, 30, event_kind="Unstaked", block_number=4_500, offset=15)
        scanner = make_scanner(ledger)

        first = await scanner.scan_range(3_000, 5_000)
        second = await scanner.scan_range(3_000, 5_000)

        assert first.participants == second.participants
        assert first.participants.to_list() == second.participants.to_list()
        assert len(first.participants) == 45

    @pytest.mark.asyncio
    async def test_invalid_range(self, ledger: InMemoryLedger) -> None:
        with pytest.raises(InvalidConfigurationError):
            await make_scanner(ledger).scan_range(10, 5)
        assert ledger.queries == []

    @pytest.mark.asyncio
    async def test_empty_range(self, ledger: InMemoryLedger) -> None:
        result = await make_scanner(ledger).scan_range(0, 100)
        assert result.status == DiscoveryStatus.EMPTY


class TestObservability:
    """Tests for scanner metrics and tracing."""

    @pytest.mark.asyncio
    async def test_metrics(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 4, block_number=9_500)
        ledger.fail_queries("Unstaked")
        metrics = MigrationMetrics(run_id="scan", enable_metrics=False)
        scanner = EventScanner(
            ledger, ScanConfig(windows=WINDOWS), metrics=metrics, enable_tracing=False
        )

        await scanner.discover()

        snapshot = metrics.get_snapshot()
        assert snapshot.queries == 5
        assert snapshot.failed_queries == 1
        assert snapshot.participants_discovered == 4

    @pytest.mark.asyncio
    async def test_spans(self, ledger: InMemoryLedger) -> None:
        populate_ledger(ledger, 1, block_number=9_500)
        tracer = MockTracer()
        scanner = EventScanner(
            ledger, ScanConfig(windows=WINDOWS, tracked_events=("Staked",)), tracer=tracer
        )

        await scanner.discover()

        assert tracer.span_names == [
            "ledgershift.scanner.discover",
            "ledgershift.scanner.window",
            "ledgershift.scanner.query",
        ]

    @pytest.mark.asyncio
    async def test_uses_ledger_client_interface(self) -> None:
        ledger = AsyncMock()
        ledger.current_height.return_value = 100
        ledger.query.return_value = []
        scanner = EventScanner(
            ledger, ScanConfig(windows=(50,), tracked_events=("Staked",)), enable_tracing=False
        )

        result = await scanner.discover()

        ledger.query.assert_awaited_once_with(EventFilter("Staked", 50, 100))
        assert result.status == DiscoveryStatus.EMPTY
