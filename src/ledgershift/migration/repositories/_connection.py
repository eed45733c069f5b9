"""
Connection handling helper for run record repositories.

``execute_with_connection`` accepts either an AsyncEngine or an
AsyncConnection so repositories can be handed whichever the caller holds.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection ready for execute() calls.

    Args:
        conn: Database connection or engine
        transactional: Open a transaction (begin) rather than a bare
            connection (connect). Only applies to an AsyncEngine.

    Example:
        >>> async with execute_with_connection(self.conn) as conn:
        ...     await conn.execute(query, params)

    Note:
        An AsyncConnection is yielded as is; the caller owns its transaction.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        yield conn
