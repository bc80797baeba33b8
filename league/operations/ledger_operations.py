"""
Shared base for operations that append to the ledger.
"""

from typing import Iterable, Optional

from league.services.base import BaseService
from league.utils.exceptions import TransientCacheError
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


class LedgerOperations(BaseService):
    """Base for ledger-writing workflows that keep the leaderboard cache current."""

    def __init__(self, database, leaderboard_cache=None):
        """
        Args:
            database: Ledger Database instance
            leaderboard_cache: Optional LeaderboardCacheService to invalidate after commits
        """
        super().__init__(database)
        self.leaderboard_cache = leaderboard_cache

    async def _refresh_leaderboard(
        self,
        league_id: int,
        matches_required: int,
        user_ids: Optional[Iterable[str]]
    ) -> bool:
        """
        Republish affected users after the ledger commit.

        The ledger is the source of truth and is already committed here, so a
        cache failure is logged and reported rather than raised: the cached
        view catches up on the next full regeneration.
        """
        if self.leaderboard_cache is None:
            return False
        try:
            await self.leaderboard_cache.invalidate(league_id, matches_required, user_ids)
            return True
        except TransientCacheError as e:
            logger.error(f"League {league_id}: leaderboard invalidation failed: {e}", exc_info=True)
            return False
