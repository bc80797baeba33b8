"""
Ranking of league members.

Orders aggregates with a deterministic multi-key comparator:

1. higher score
2. not under the soft penalty (at equal score)
3. more 1st place finishes
4. higher highscore
5. keyed hash of (user, league, salt), so ties are stable per league but
   cannot be predicted from the user id alone
"""

import hashlib
import hmac
from functools import cmp_to_key
from typing import Iterable, List, Optional, Tuple

from league.config import Config
from league.data_models.leaderboard import RankableUser, RankedEntry


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


class LeagueRanker:
    """Ranks the members of one league."""

    def __init__(self, league_id: int, salt: Optional[str] = None):
        self.league_id = league_id
        self.salt = salt if salt is not None else Config.RANK_TIEBREAK_SALT

    def tiebreak_key(self, user_id: str) -> str:
        """HMAC of the user and league ids keyed by the salt, as hex."""
        message = f"{self.league_id}:{user_id}".encode('utf-8')
        return hmac.new(self.salt.encode('utf-8'), message, hashlib.sha256).hexdigest()

    def compare(self, a: RankableUser, b: RankableUser) -> int:
        """Negative when ``a`` ranks ahead of ``b``."""
        agg_a, agg_b = a.aggregate, b.aggregate

        c = _cmp(agg_b.score, agg_a.score)
        if c:
            return c

        c = int(a.soft_penalty) - int(b.soft_penalty)
        if c:
            return c

        c = agg_b.num_firsts - agg_a.num_firsts
        if c:
            return c

        # None is negative infinity
        high_a = agg_a.highscore if agg_a.highscore is not None else float('-inf')
        high_b = agg_b.highscore if agg_b.highscore is not None else float('-inf')
        c = _cmp(high_b, high_a)
        if c:
            return c

        return _cmp(self.tiebreak_key(a.user_id), self.tiebreak_key(b.user_id))

    def rank(self, users: Iterable[RankableUser]) -> List[RankedEntry]:
        """
        Rank eligible users.

        Rank 1 goes to the first user after sorting, unless every user is under
        the soft penalty: then rank 1 stays vacant and numbering starts at 2.
        """
        ordered = sorted(users, key=cmp_to_key(self.compare))
        first_rank = 1
        if ordered and all(user.soft_penalty for user in ordered):
            first_rank = 2

        return [
            RankedEntry(user_id=user.user_id, aggregate=user.aggregate, rank=rank)
            for rank, user in enumerate(ordered, start=first_rank)
        ]

    @staticmethod
    def order_unranked(users: Iterable[RankableUser]) -> List[RankedEntry]:
        """More matches first, then higher score, then display name."""
        ordered = sorted(
            users,
            key=lambda user: (
                -user.aggregate.num_matches,
                -user.aggregate.score,
                user.display_name,
                user.user_id
            )
        )
        return [RankedEntry(user_id=user.user_id, aggregate=user.aggregate, rank=None) for user in ordered]

    @staticmethod
    def partition(
        users: Iterable[RankableUser],
        matches_required: int
    ) -> Tuple[List[RankableUser], List[RankableUser]]:
        """Split into (ranked-eligible, everyone else)."""
        eligible, others = [], []
        for user in users:
            if user.aggregate.num_matches >= matches_required:
                eligible.append(user)
            else:
                others.append(user)
        return eligible, others

    def build(
        self,
        users: Iterable[RankableUser],
        matches_required: int
    ) -> Tuple[List[RankedEntry], List[RankedEntry]]:
        """Partition, rank and order a whole league population."""
        eligible, others = self.partition(users, matches_required)
        return self.rank(eligible), self.order_unranked(others)
