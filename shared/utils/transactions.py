"""
shared/utils/transactions.py
Short write transactions with row-lock timeouts and concurrency error mapping.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from shared.exceptions import StaleStateError

logger = logging.getLogger(__name__)

LOCK_NOT_AVAILABLE = "55P03"


def is_lock_timeout(exc: OperationalError) -> bool:
    """True when the database gave up waiting for a row or table lock."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    message = str(orig).lower()
    return "lock timeout" in message or "database is locked" in message


@asynccontextmanager
async def write_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    lock_timeout_ms: int,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session inside BEGIN ... COMMIT.

    On PostgreSQL the lock wait is capped so a contended SELECT ... FOR UPDATE
    fails fast. Lost optimistic version checks and lock timeouts both surface
    as StaleStateError; the transaction is rolled back either way.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                if session.bind.dialect.name == "postgresql":
                    await session.execute(
                        text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'")
                    )
                yield session
        except StaleDataError as exc:
            logger.info(f"Optimistic version check lost: {exc}")
            raise StaleStateError(
                "The record was modified by a concurrent request; reload and retry"
            ) from exc
        except OperationalError as exc:
            if is_lock_timeout(exc):
                logger.info("Row lock wait timed out")
                raise StaleStateError(
                    "The record is busy with a concurrent request; retry shortly"
                ) from exc
            raise
