"""
Observability utilities for ledgershift.

Provides the composition-based Tracer used by every component and the
standard attribute names for spans and metrics.

Note:
    OpenTelemetry is an optional dependency (the ``telemetry`` extra).
    Everything here works without it.
"""

from ledgershift.observability.attributes import (
    ATTR_AUTHORIZATION_STATE,
    ATTR_BATCH_COUNT,
    ATTR_BATCH_INDEX,
    ATTR_BATCH_SIZE,
    ATTR_CALLER,
    ATTR_DB_SYSTEM,
    ATTR_DISCOVERY_STATUS,
    ATTR_END_BLOCK,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_KIND,
    ATTR_LEDGER_HEIGHT,
    ATTR_NONCE,
    ATTR_OPERATION,
    ATTR_PARTICIPANT_COUNT,
    ATTR_RUN_ID,
    ATTR_RUN_RESULT,
    ATTR_START_BLOCK,
    ATTR_SUCCESS_COUNT,
    ATTR_TX_REFERENCE,
    ATTR_WINDOW_LOOKBACK,
)
from ledgershift.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_RUN_ID",
    "ATTR_RUN_RESULT",
    "ATTR_LEDGER_HEIGHT",
    "ATTR_EVENT_KIND",
    "ATTR_START_BLOCK",
    "ATTR_END_BLOCK",
    "ATTR_WINDOW_LOOKBACK",
    "ATTR_DISCOVERY_STATUS",
    "ATTR_PARTICIPANT_COUNT",
    "ATTR_BATCH_INDEX",
    "ATTR_BATCH_COUNT",
    "ATTR_BATCH_SIZE",
    "ATTR_SUCCESS_COUNT",
    "ATTR_TX_REFERENCE",
    "ATTR_CALLER",
    "ATTR_OPERATION",
    "ATTR_NONCE",
    "ATTR_AUTHORIZATION_STATE",
    "ATTR_ERROR_TYPE",
    "ATTR_DB_SYSTEM",
]
