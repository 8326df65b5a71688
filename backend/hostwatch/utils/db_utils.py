"""Time and database helpers shared by the services."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError, InterfaceError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings of driver errors worth retrying: SQLite writer contention and
# PostgreSQL connection churn
_TRANSIENT_ERRORS = (
    "database is locked",
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
)


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_of(moment: datetime) -> str:
    """Month partition key (YYYY-MM) for a timestamp."""
    return moment.strftime("%Y-%m")


def is_transient(error: Exception) -> bool:
    message = str(error).lower()
    return any(fragment in message for fragment in _TRANSIENT_ERRORS)


async def retry_on_lock(
    coro_func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 0.1,
) -> T:
    """Await `coro_func()`, retrying transient database errors with backoff.

    Many probes finish at once and each commits on its own session, so a
    commit may briefly lose the SQLite write lock. The delay doubles on every
    attempt; the last error is re-raised once `max_retries` is spent.
    """
    for attempt in range(max_retries):
        try:
            return await coro_func()
        except (OperationalError, InterfaceError) as e:
            if not is_transient(e) or attempt == max_retries - 1:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(f"Transient database error, retrying in {delay}s ({attempt + 1}/{max_retries}): {e}")
            await asyncio.sleep(delay)
