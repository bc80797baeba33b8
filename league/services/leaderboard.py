"""
Exact leaderboard computation straight from the ledger.

The cached leaderboard orders users by a packed score that drops the soft
penalty and hash tiebreaks. This service runs the full comparator over the
whole ledger instead; it is slower and meant for audits, exports and for
checking the cached order.
"""

import time
import logging
from typing import List

from league.data_models.leaderboard import ExactLeaderboard, RankableUser
from league.data_models.ledger import LedgerTransaction
from league.services.base import BaseService
from league.utils.aggregation import aggregate_transactions
from league.utils.ranking import LeagueRanker

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for exact leaderboard computation and ledger history."""

    def __init__(self, database, salt: str = None):
        super().__init__(database)
        self.salt = salt

    async def compute_leaderboard(self, league_id: int) -> ExactLeaderboard:
        """Fold and rank every member of a league."""
        last_updated = int(time.time() * 1000)
        league = await self.db.get_league(league_id)
        members = await self.db.get_league_members(league_id)

        users = [
            RankableUser(
                user_id=member.user_id,
                aggregate=aggregate_transactions(member.transactions),
                soft_penalty=member.soft_penalty,
                display_name=member.display_name
            )
            for member in members
        ]

        ranked, unranked = LeagueRanker(league_id, self.salt).build(users, league.matches_required)
        logger.debug(f"League {league_id}: computed exact leaderboard ({len(ranked)} ranked, {len(unranked)} unranked)")
        return ExactLeaderboard(last_updated=last_updated, ranked=ranked, unranked=unranked)

    async def get_score_history(self, league_id: int, user_id: str) -> List[LedgerTransaction]:
        """A member's transactions, newest first."""
        return await self.db.get_score_history(league_id, user_id)
