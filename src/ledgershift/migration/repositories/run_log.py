"""
Run record repositories.

Every migration run leaves a record: its identifier, overall result,
totals and the full JSON summary. Records are written once per run and
never updated, so re-running a migration produces a new record rather
than overwriting the previous one.

Implementations:
    - InMemoryRunRecordRepository: for tests and dry runs
    - SQLiteRunRecordRepository: aiosqlite, single-file deployments
    - PostgreSQLRunRecordRepository: SQLAlchemy async engine or connection
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ledgershift.migration.models import RunSummary
from ledgershift.migration.repositories._connection import execute_with_connection
from ledgershift.observability import ATTR_DB_SYSTEM, ATTR_RUN_ID, Tracer, create_tracer
from ledgershift.serialization import json_dumps, json_loads

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

RUN_TABLE = "ledgershift_runs"

SQLITE_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {RUN_TABLE} (
    run_id TEXT PRIMARY KEY,
    result TEXT NOT NULL,
    total_users INTEGER NOT NULL,
    total_successes INTEGER NOT NULL,
    total_failures INTEGER NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT NOT NULL,
    summary TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{RUN_TABLE}_completed_at ON {RUN_TABLE} (completed_at);
"""

POSTGRESQL_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {RUN_TABLE} (
    run_id UUID PRIMARY KEY,
    result VARCHAR(32) NOT NULL,
    total_users INTEGER NOT NULL,
    total_successes INTEGER NOT NULL,
    total_failures INTEGER NOT NULL,
    started_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ NOT NULL,
    summary TEXT NOT NULL
)
"""


@dataclass(frozen=True)
class RunRecord:
    """
    Persisted view of one migration run.

    Attributes:
        run_id: Run identifier
        result: RunResult value
        total_users: Participants in completed batches
        total_successes: Participants migrated
        total_failures: Participants not migrated
        started_at: When the run started
        completed_at: When the run finished
        summary: Full RunSummary.to_dict() payload
    """

    run_id: UUID
    result: str
    total_users: int
    total_successes: int
    total_failures: int
    started_at: datetime
    completed_at: datetime
    summary: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: RunSummary) -> RunRecord:
        return cls(
            run_id=summary.run_id,
            result=summary.result.value,
            total_users=summary.total_users,
            total_successes=summary.total_successes,
            total_failures=summary.total_failures,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            summary=summary.to_dict(),
        )


@runtime_checkable
class RunRecordRepository(Protocol):
    """Protocol for run record storage."""

    async def save(self, summary: RunSummary) -> RunRecord:
        """
        Persist a run summary.

        Saving the same run_id twice keeps the first record.
        """
        ...

    async def get(self, run_id: UUID) -> RunRecord | None:
        """Get a run record by identifier, or None."""
        ...

    async def list_recent(self, limit: int = 10) -> list[RunRecord]:
        """Most recently completed runs first."""
        ...


class InMemoryRunRecordRepository:
    """
    In-memory run record repository for testing.

    Example:
        >>> repo = InMemoryRunRecordRepository()
        >>> await repo.save(summary)
        >>> (await repo.get(summary.run_id)).result
        'success'
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._records: dict[UUID, RunRecord] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def save(self, summary: RunSummary) -> RunRecord:
        with self._tracer.span("ledgershift.runs.save", {ATTR_RUN_ID: str(summary.run_id)}):
            async with self._lock:
                existing = self._records.get(summary.run_id)
                if existing is not None:
                    return existing
                record = RunRecord.from_summary(summary)
                self._records[summary.run_id] = record
                return record

    async def get(self, run_id: UUID) -> RunRecord | None:
        async with self._lock:
            return self._records.get(run_id)

    async def list_recent(self, limit: int = 10) -> list[RunRecord]:
        async with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.completed_at, reverse=True)
            return records[:limit]

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()


class SQLiteRunRecordRepository:
    """
    SQLite implementation of the run record repository.

    Stores records in the ``ledgershift_runs`` table. UUIDs and timestamps
    are stored as TEXT; the summary as a JSON document.

    Example:
        >>> async with aiosqlite.connect("runs.db") as db:
        ...     repo = SQLiteRunRecordRepository(db)
        ...     await repo.initialize()
        ...     await repo.save(summary)
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            connection: aiosqlite database connection
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._connection = connection

    async def initialize(self) -> None:
        """Create the table if it does not exist. Idempotent."""
        await self._connection.executescript(SQLITE_SCHEMA)
        await self._connection.commit()
        logger.debug("Initialized SQLite run record table %s", RUN_TABLE)

    async def save(self, summary: RunSummary) -> RunRecord:
        record = RunRecord.from_summary(summary)
        with self._tracer.span(
            "ledgershift.runs.save",
            {ATTR_RUN_ID: str(record.run_id), ATTR_DB_SYSTEM: "sqlite"},
        ):
            await self._connection.execute(
                f"""
                INSERT INTO {RUN_TABLE}
                    (run_id, result, total_users, total_successes, total_failures,
                     started_at, completed_at, summary)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (run_id) DO NOTHING
                """,
                (
                    str(record.run_id),
                    record.result,
                    record.total_users,
                    record.total_successes,
                    record.total_failures,
                    record.started_at.isoformat(),
                    record.completed_at.isoformat(),
                    json_dumps(record.summary),
                ),
            )
            await self._connection.commit()
        stored = await self.get(record.run_id)
        return stored or record

    async def get(self, run_id: UUID) -> RunRecord | None:
        with self._tracer.span(
            "ledgershift.runs.get",
            {ATTR_RUN_ID: str(run_id), ATTR_DB_SYSTEM: "sqlite"},
        ):
            cursor = await self._connection.execute(
                f"""
                SELECT run_id, result, total_users, total_successes, total_failures,
                       started_at, completed_at, summary
                FROM {RUN_TABLE}
                WHERE run_id = ?
                """,
                (str(run_id),),
            )
            row = await cursor.fetchone()
            return _row_to_record(row) if row else None

    async def list_recent(self, limit: int = 10) -> list[RunRecord]:
        with self._tracer.span("ledgershift.runs.list_recent", {ATTR_DB_SYSTEM: "sqlite"}):
            cursor = await self._connection.execute(
                f"""
                SELECT run_id, result, total_users, total_successes, total_failures,
                       started_at, completed_at, summary
                FROM {RUN_TABLE}
                ORDER BY completed_at DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
            return [_row_to_record(row) for row in rows]


class PostgreSQLRunRecordRepository:
    """
    PostgreSQL implementation of the run record repository.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> repo = PostgreSQLRunRecordRepository(engine)
        >>> await repo.initialize()
        >>> await repo.save(summary)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.conn = conn

    async def initialize(self) -> None:
        """Create the table if it does not exist. Idempotent."""
        async with execute_with_connection(self.conn, transactional=True) as conn:
            await conn.execute(text(POSTGRESQL_SCHEMA))

    async def save(self, summary: RunSummary) -> RunRecord:
        record = RunRecord.from_summary(summary)
        with self._tracer.span(
            "ledgershift.runs.save",
            {ATTR_RUN_ID: str(record.run_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                INSERT INTO {RUN_TABLE}
                    (run_id, result, total_users, total_successes, total_failures,
                     started_at, completed_at, summary)
                VALUES (:run_id, :result, :total_users, :total_successes, :total_failures,
                        :started_at, :completed_at, :summary)
                ON CONFLICT (run_id) DO NOTHING
            """)
            params = {
                "run_id": record.run_id,
                "result": record.result,
                "total_users": record.total_users,
                "total_successes": record.total_successes,
                "total_failures": record.total_failures,
                "started_at": record.started_at,
                "completed_at": record.completed_at,
                "summary": json_dumps(record.summary),
            }
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)
        stored = await self.get(record.run_id)
        return stored or record

    async def get(self, run_id: UUID) -> RunRecord | None:
        with self._tracer.span(
            "ledgershift.runs.get",
            {ATTR_RUN_ID: str(run_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                SELECT run_id, result, total_users, total_successes, total_failures,
                       started_at, completed_at, summary
                FROM {RUN_TABLE}
                WHERE run_id = :run_id
            """)
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"run_id": run_id})
                row = result.fetchone()
            return _row_to_record(row) if row else None

    async def list_recent(self, limit: int = 10) -> list[RunRecord]:
        with self._tracer.span("ledgershift.runs.list_recent", {ATTR_DB_SYSTEM: "postgresql"}):
            query = text(f"""
                SELECT run_id, result, total_users, total_successes, total_failures,
                       started_at, completed_at, summary
                FROM {RUN_TABLE}
                ORDER BY completed_at DESC
                LIMIT :limit
            """)
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"limit": limit})
                rows = result.fetchall()
            return [_row_to_record(row) for row in rows]


def _parse_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _row_to_record(row: Any) -> RunRecord:
    run_id = row[0] if isinstance(row[0], UUID) else UUID(str(row[0]))
    return RunRecord(
        run_id=run_id,
        result=row[1],
        total_users=row[2],
        total_successes=row[3],
        total_failures=row[4],
        started_at=_parse_timestamp(row[5]),
        completed_at=_parse_timestamp(row[6]),
        summary=json_loads(row[7]),
    )


__all__ = [
    "POSTGRESQL_SCHEMA",
    "RUN_TABLE",
    "SQLITE_SCHEMA",
    "InMemoryRunRecordRepository",
    "PostgreSQLRunRecordRepository",
    "RunRecord",
    "RunRecordRepository",
    "SQLiteRunRecordRepository",
]
