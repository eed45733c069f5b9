"""
Standard span and metric attribute names for ledgershift.

Example:
    >>> from ledgershift.observability.attributes import ATTR_BATCH_INDEX
    >>>
    >>> with tracer.span(
    ...     "ledgershift.executor.batch",
    ...     {ATTR_BATCH_INDEX: batch.index, ATTR_PARTICIPANT_COUNT: len(batch)},
    ... ):
    ...     pass
"""

# =============================================================================
# Run Attributes
# =============================================================================

ATTR_RUN_ID = "ledgershift.run.id"
"""Identifier of the migration run (UUID string)."""

ATTR_RUN_RESULT = "ledgershift.run.result"
"""Final result classification of a run (e.g. 'success', 'no_data')."""

# =============================================================================
# Discovery Attributes
# =============================================================================

ATTR_LEDGER_HEIGHT = "ledgershift.ledger.height"
"""Ledger height used as the anchor for scan windows (integer)."""

ATTR_EVENT_KIND = "ledgershift.event.kind"
"""Event kind being queried (string)."""

ATTR_START_BLOCK = "ledgershift.block.start"
"""First block of a queried range (integer)."""

ATTR_END_BLOCK = "ledgershift.block.end"
"""Last block of a queried range (integer)."""

ATTR_WINDOW_LOOKBACK = "ledgershift.window.lookback"
"""Lookback size of a scan window in blocks (integer)."""

ATTR_DISCOVERY_STATUS = "ledgershift.discovery.status"
"""Discovery status (found, empty, fallback, error)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_PARTICIPANT_COUNT = "ledgershift.participant.count"
"""Number of participants in a set or batch (integer)."""

ATTR_BATCH_INDEX = "ledgershift.batch.index"
"""Sequence index of a batch (integer)."""

ATTR_BATCH_COUNT = "ledgershift.batch.count"
"""Number of planned batches (integer)."""

ATTR_BATCH_SIZE = "ledgershift.batch.size"
"""Configured batch size (integer)."""

ATTR_SUCCESS_COUNT = "ledgershift.batch.success_count"
"""Participants migrated successfully in a batch (integer)."""

ATTR_TX_REFERENCE = "ledgershift.tx.reference"
"""Transaction reference returned by the service (string)."""

# =============================================================================
# Authorization Attributes
# =============================================================================

ATTR_CALLER = "ledgershift.authorization.caller"
"""Caller the authorization is issued for (address string)."""

ATTR_OPERATION = "ledgershift.authorization.operation"
"""Canonical signature of the privileged operation (string)."""

ATTR_NONCE = "ledgershift.authorization.nonce"
"""Nonce carried by the authorization (integer)."""

ATTR_AUTHORIZATION_STATE = "ledgershift.authorization.state"
"""Final state of an authorization attempt (string)."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "error.type"
"""Exception class name of a failed unit of work (string)."""

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql')."""
