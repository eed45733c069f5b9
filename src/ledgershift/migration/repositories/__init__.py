"""
Run record repositories.

Each run leaves one record. Three interchangeable implementations share
the RunRecordRepository protocol:

- InMemoryRunRecordRepository for tests and dry runs
- SQLiteRunRecordRepository (``sqlite`` extra) for single-file deployments
- PostgreSQLRunRecordRepository (``postgresql`` extra) for shared databases
"""

from ledgershift.migration.repositories.run_log import (
    POSTGRESQL_SCHEMA,
    RUN_TABLE,
    SQLITE_SCHEMA,
    InMemoryRunRecordRepository,
    PostgreSQLRunRecordRepository,
    RunRecord,
    RunRecordRepository,
    SQLiteRunRecordRepository,
)

__all__ = [
    "RunRecord",
    "RunRecordRepository",
    "InMemoryRunRecordRepository",
    "SQLiteRunRecordRepository",
    "PostgreSQLRunRecordRepository",
    "RUN_TABLE",
    "SQLITE_SCHEMA",
    "POSTGRESQL_SCHEMA",
]
