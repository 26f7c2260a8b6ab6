"""
Shared plumbing for services that read the backing store.

Leaderboard reads never write, so sessions here are read scopes: they are
always rolled back on exit. Transient connection problems are retried with
exponential backoff; anything still failing surfaces as a FetchFailure.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from ranksync.utils.sync_exceptions import FetchFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, ConnectionError, asyncio.TimeoutError)


def is_transient(error: BaseException) -> bool:
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class BaseService:
    """Base class for store-backed services."""

    def __init__(self, session_factory, retry_delay: float = 0.1):
        """
        Args:
            session_factory: async_sessionmaker from the Database class
            retry_delay: first backoff step in seconds, doubled on each retry
        """
        self.session_factory = session_factory
        self.retry_delay = retry_delay

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Read-only session scope."""
        session = self.session_factory()
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async def execute_with_retry(self, func: Callable[[], Awaitable[T]], max_retries: int = 3) -> T:
        """Run ``func``, retrying transient store errors up to ``max_retries`` attempts."""
        operation = getattr(func, '__qualname__', repr(func))
        attempts = max(1, max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await func()
            except Exception as e:
                if not is_transient(e):
                    raise FetchFailure(operation, f"{type(e).__name__}: {e}") from e
                if attempt == attempts:
                    raise FetchFailure(operation, f"gave up after {attempts} attempts: {e}") from e
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(f"{operation} failed (attempt {attempt}/{attempts}), retrying in {delay:g}s: {e}")
                await asyncio.sleep(delay)
