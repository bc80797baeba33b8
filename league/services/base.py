"""
Base service class for the league leaderboard core.

Provides ledger session access and the bounded exponential-backoff retry used
around every optimistic cache transaction.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Callable, Tuple, Type, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession

from league.config import Config
from league.utils.exceptions import TransientCacheError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule: ``attempts`` tries, backoff doubling from ``initial_backoff`` seconds."""
    attempts: int = Config.CACHE_RETRY_ATTEMPTS
    initial_backoff: float = Config.CACHE_RETRY_INITIAL_BACKOFF

    def delays(self):
        """Backoff before each retry (one fewer than attempts)."""
        backoff = self.initial_backoff
        for _ in range(self.attempts - 1):
            yield backoff
            backoff *= 2


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
    description: str = None
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. Exhausting the budget raises TransientCacheError
    chained to the last retryable failure.
    """
    name = description or getattr(operation, '__name__', 'operation')
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            delay = next(delays, None)
            if delay is None:
                logger.error(f"{name}: giving up after {attempt} attempts ({type(e).__name__})")
                raise TransientCacheError(name, attempt, str(e) or type(e).__name__) from e
            logger.warning(f"{name}: attempt {attempt} failed ({type(e).__name__}), retrying in {delay * 1000:.0f}ms")
            await asyncio.sleep(delay)


class BaseService:
    """Base class for all services with async ledger session management."""

    def __init__(self, database, retry_policy: RetryPolicy = None):
        """
        Initialize base service.

        Args:
            database: Ledger Database instance
            retry_policy: Retry schedule for optimistic cache operations
        """
        self.db = database
        self.retry_policy = retry_policy or RetryPolicy()

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async ledger operations."""
        async with self.db.transaction() as session:
            yield session

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...],
        description: str = None
    ) -> T:
        """Execute a function under this service's retry policy."""
        return await with_backoff(func, self.retry_policy, retry_on, description)
