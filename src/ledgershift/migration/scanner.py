"""
EventScanner - discovers participants from historical ledger events.

Responsibilities:
- Anchor progressively larger lookback windows at the ledger height
- Issue one query per tracked event kind per window (chunked when the
  provider limits block ranges)
- Normalize and deduplicate the participant field of every event
- Stop at the first window that yields participants
- Fall back to an operator list, loudly, when every window is empty

Discovery is best-effort. A failed query is logged, recorded as a
DiscoveryPartialError and treated as zero results; only an
InvalidConfigurationError aborts the scan. A pass that finds nothing while
some window could not be read at all ends in ERROR, not EMPTY. Callers must
not assume the result is complete.

Usage:
    >>> scanner = EventScanner(ledger, ScanConfig())
    >>> result = await scanner.discover()
    >>> result.status, len(result.participants)
    (<DiscoveryStatus.FOUND: 'found'>, 120)
"""

from __future__ import annotations

import asyncio
import logging

from ledgershift.config import DEFAULT_CALL_TIMEOUT_SECONDS, ScanConfig
from ledgershift.exceptions import (
    DiscoveryPartialError,
    InvalidAddressError,
    InvalidConfigurationError,
    classify_exception,
)
from ledgershift.ledger.interface import EventFilter, LedgerClient, LedgerEvent
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.migration.models import DiscoveryResult, DiscoveryStatus, ScanWindow
from ledgershift.observability import (
    ATTR_DISCOVERY_STATUS,
    ATTR_END_BLOCK,
    ATTR_EVENT_KIND,
    ATTR_LEDGER_HEIGHT,
    ATTR_PARTICIPANT_COUNT,
    ATTR_START_BLOCK,
    ATTR_WINDOW_LOOKBACK,
    Tracer,
    create_tracer,
)
from ledgershift.participants import ParticipantSet, normalize_address

logger = logging.getLogger(__name__)


class EventScanner:
    """
    Discovers participants by scanning ledger events over widening windows.

    Example:
        >>> scanner = EventScanner(ledger, ScanConfig(windows=(1_000, 10_000)))
        >>> result = await scanner.discover()
        >>> if result.partial:
        ...     logger.warning("discovery incomplete: %d failed queries", len(result.failures))

    Attributes:
        ledger: Ledger to query
        config: Scan configuration
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: ScanConfig | None = None,
        *,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the scanner.

        Args:
            ledger: Ledger to query
            config: Scan configuration (defaults to ScanConfig())
            call_timeout_seconds: Bound on each height lookup and query
            metrics: Optional metrics recorder
            tracer: Optional custom Tracer
            enable_tracing: Whether to create a default tracer when none is given
        """
        self._ledger = ledger
        self._config = config or ScanConfig()
        self._timeout = call_timeout_seconds
        self._metrics = metrics
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def config(self) -> ScanConfig:
        return self._config

    async def discover(self) -> DiscoveryResult:
        """
        Run a discovery pass.

        The ledger height is read once; every window is anchored at it, so
        windows nest and the pass sees a consistent ledger prefix.

        Returns:
            DiscoveryResult with status FOUND, FALLBACK, EMPTY or ERROR
        """
        with self._tracer.span("ledgershift.scanner.discover") as span:
            try:
                height = await asyncio.wait_for(self._ledger.current_height(), self._timeout)
            except InvalidConfigurationError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.error(
                    "Could not read ledger height [%s]: %s",
                    classify_exception(e).error_code,
                    reason,
                )
                failure = DiscoveryPartialError("height", 0, 0, reason)
                degraded = self._fallback_or_empty(height=None, failures=[failure], queries=0)
                if degraded.status == DiscoveryStatus.EMPTY:
                    degraded.status = DiscoveryStatus.ERROR
                if self._metrics:
                    self._metrics.record_discovery(
                        degraded.status.value, len(degraded.participants)
                    )
                return degraded

            result: DiscoveryResult | None = None
            failures: list[DiscoveryPartialError] = []
            queries = 0
            windows_scanned = 0
            unscanned: list[ScanWindow] = []
            for lookback in self._config.windows:
                window = ScanWindow.anchored(height, lookback)
                windows_scanned += 1
                # Fresh set per window; a wider window rescans the narrower one
                participants, window_queries, window_failures = await self._scan_window(window)
                queries += window_queries
                failures.extend(window_failures)
                if window_queries and len(window_failures) == window_queries:
                    unscanned.append(window)

                if participants:
                    logger.info(
                        "Discovered %d participants in blocks [%d, %d] (lookback %d)",
                        len(participants),
                        window.start_block,
                        window.end_block,
                        lookback,
                    )
                    result = DiscoveryResult(
                        participants=participants,
                        status=DiscoveryStatus.FOUND,
                        height=height,
                        window=window,
                        windows_scanned=windows_scanned,
                        queries=queries,
                        failures=failures,
                    )
                    break

                logger.info("No participants in blocks [%d, %d]", window.start_block, height)
                if window.start_block == 0:
                    # Window already reaches genesis; wider ones are identical
                    break

            if result is None:
                result = self._fallback_or_empty(height, failures, queries)
                result.windows_scanned = windows_scanned
                if unscanned and result.status == DiscoveryStatus.EMPTY:
                    # EMPTY requires every window to have been read
                    logger.error(
                        "No participants found, but every query failed for %d window(s) "
                        "(widest [%d, %d]); treating discovery as failed",
                        len(unscanned),
                        unscanned[-1].start_block,
                        unscanned[-1].end_block,
                    )
                    result.status = DiscoveryStatus.ERROR

            if span is not None:
                span.set_attribute(ATTR_LEDGER_HEIGHT, height)
                span.set_attribute(ATTR_DISCOVERY_STATUS, result.status.value)
                span.set_attribute(ATTR_PARTICIPANT_COUNT, len(result.participants))
            if self._metrics:
                self._metrics.record_discovery(result.status.value, len(result.participants))
            return result

    async def scan_range(self, start_block: int, end_block: int) -> DiscoveryResult:
        """
        Scan one fixed block range for every tracked event kind.

        Scanning the same range twice over an unchanged ledger prefix
        yields an identical participant set.

        Raises:
            InvalidConfigurationError: If the range is invalid
        """
        # Validate before any query is sent
        EventFilter(self._config.tracked_events[0], start_block, end_block)
        window = ScanWindow(
            lookback=end_block - start_block + 1,
            start_block=start_block,
            end_block=end_block,
        )
        participants, queries, failures = await self._scan_window(window)
        if participants:
            status = DiscoveryStatus.FOUND
        elif queries and len(failures) == queries:
            status = DiscoveryStatus.ERROR
        else:
            status = DiscoveryStatus.EMPTY
        return DiscoveryResult(
            participants=participants,
            status=status,
            height=end_block,
            window=window,
            windows_scanned=1,
            queries=queries,
            failures=failures,
        )

    async def _scan_window(
        self, window: ScanWindow
    ) -> tuple[ParticipantSet, int, list[DiscoveryPartialError]]:
        participants = ParticipantSet()
        failures: list[DiscoveryPartialError] = []
        queries = 0
        with self._tracer.span(
            "ledgershift.scanner.window",
            {
                ATTR_WINDOW_LOOKBACK: window.lookback,
                ATTR_START_BLOCK: window.start_block,
                ATTR_END_BLOCK: window.end_block,
            },
        ):
            for event_kind in self._config.tracked_events:
                window_filter = EventFilter(event_kind, window.start_block, window.end_block)
                for chunk in window_filter.chunked(self._config.max_block_span):
                    queries += 1
                    events = await self._query(chunk, failures)
                    self._collect(events, participants)
        return participants, queries, failures

    async def _query(
        self, event_filter: EventFilter, failures: list[DiscoveryPartialError]
    ) -> list[LedgerEvent]:
        with self._tracer.span(
            "ledgershift.scanner.query",
            {
                ATTR_EVENT_KIND: event_filter.event_kind,
                ATTR_START_BLOCK: event_filter.start_block,
                ATTR_END_BLOCK: event_filter.end_block,
            },
        ):
            try:
                events = await asyncio.wait_for(self._ledger.query(event_filter), self._timeout)
            except InvalidConfigurationError:
                raise
            except Exception as e:
                failure = DiscoveryPartialError(
                    event_filter.event_kind,
                    event_filter.start_block,
                    event_filter.end_block,
                    str(e) or type(e).__name__,
                )
                logger.log(
                    failure.severity.log_level,
                    "%s [%s]; counting as zero results",
                    failure,
                    classify_exception(e).error_code,
                )
                failures.append(failure)
                if self._metrics:
                    self._metrics.record_query(event_filter.event_kind, success=False)
                return []
            if self._metrics:
                self._metrics.record_query(event_filter.event_kind, success=True)
            return events

    def _collect(self, events: list[LedgerEvent], participants: ParticipantSet) -> None:
        field_name = self._config.participant_field
        for event in events:
            value = event.get(field_name)
            if value is None:
                logger.debug(
                    "%s event at block %d has no %r field, skipping",
                    event.event_kind,
                    event.block_number,
                    field_name,
                )
                continue
            try:
                participants.add(value)
            except InvalidAddressError:
                logger.warning(
                    "%s event at block %d has malformed %r value %r, skipping",
                    event.event_kind,
                    event.block_number,
                    field_name,
                    value,
                )

    def _fallback_or_empty(
        self,
        height: int | None,
        failures: list[DiscoveryPartialError],
        queries: int,
    ) -> DiscoveryResult:
        fallback = self._config.fallback_participants
        if fallback:
            logger.warning(
                "DEGRADED MODE: no participants discovered on the ledger; using %d "
                "operator-supplied fallback addresses. Discovery is not complete.",
                len(fallback),
            )
            return DiscoveryResult(
                participants=ParticipantSet(normalize_address(a) for a in fallback),
                status=DiscoveryStatus.FALLBACK,
                height=height,
                queries=queries,
                failures=failures,
            )
        logger.info("No participants discovered and no fallback list configured")
        return DiscoveryResult(
            participants=ParticipantSet(),
            status=DiscoveryStatus.EMPTY,
            height=height,
            queries=queries,
            failures=failures,
        )


__all__ = ["EventScanner"]
