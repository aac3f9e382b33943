import asyncio
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import TransientStoreError
from core.logger import logger

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
CONFLICT_SQLSTATES = {"40001", "40P01"}
# unique_violation / check_violation: a concurrent writer took the slot
RACE_CONSTRAINT_SQLSTATES = {"23505", "23514"}
SQLITE_RACE_CONSTRAINTS = ("UNIQUE constraint failed", "CHECK constraint failed")


def is_conflict(error: DBAPIError) -> bool:
    """
    True when a failed write lost a race and may succeed if re-run.
    Foreign key and NOT NULL violations are never conflicts.
    """
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    message = str(orig or error)
    if isinstance(error, IntegrityError):
        if sqlstate:
            return sqlstate in RACE_CONSTRAINT_SQLSTATES
        return any(marker in message for marker in SQLITE_RACE_CONSTRAINTS)
    # SQLite reports write contention as a locked database
    return "database is locked" in message


async def run_with_conflict_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    base_delay: float,
    op_name: str,
) -> T:
    """
    Run a read-then-write unit of work, re-running it from scratch when the
    store rejects the write because of a concurrent transaction.
    Delay doubles after each conflict: base_delay, 2*base_delay, ...
    Non-conflict errors propagate untouched.
    """
    for attempt in range(retries):
        try:
            return await operation()
        except DBAPIError as e:
            await db.rollback()
            if not is_conflict(e):
                raise
            if attempt + 1 >= retries:
                logger.error("Write conflict retries exhausted", op=op_name, tries=retries)
                raise TransientStoreError(op=op_name) from e
            delay = base_delay * (2 ** attempt)
            logger.warning("Write conflict, retrying", op=op_name, attempt=attempt + 1, delay=delay)
            await asyncio.sleep(delay)
    raise TransientStoreError(op=op_name)
