"""
Leaderboard data models.

Provides immutable data transfer objects for derived standings. None of these
are authoritative: every value can be reproduced by folding the ledger.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Aggregate:
    """
    Per-user summary of a league ledger.
    
    ``highscore`` and ``last_activity_time`` use None for negative infinity,
    the value of the fold identity.
    """
    score: Decimal = Decimal(0)
    num_matches: int = 0
    highscore: Optional[int] = None
    placements: Dict[int, int] = field(default_factory=dict)
    last_activity_time: Optional[datetime] = None
    
    @property
    def num_firsts(self) -> int:
        return self.placements.get(1, 0)


@dataclass(frozen=True)
class RankableUser:
    """Input row of the ranker."""
    user_id: str
    aggregate: Aggregate
    soft_penalty: bool = False
    display_name: str = ""


@dataclass(frozen=True)
class RankedEntry:
    """Single leaderboard row. ``rank`` is None below the matches threshold."""
    user_id: str
    aggregate: Aggregate
    rank: Optional[int] = None


@dataclass(frozen=True)
class LeaderboardSnapshot:
    """Read result of the cached leaderboard, built fresh on every read."""
    entries: List[RankedEntry]
    last_updated: int  # epoch milliseconds


@dataclass(frozen=True)
class ExactLeaderboard:
    """Leaderboard computed directly from the ledger with the full comparator."""
    last_updated: int
    ranked: List[RankedEntry]
    unranked: List[RankedEntry]
    
    @property
    def entries(self) -> List[RankedEntry]:
        return self.ranked + self.unranked
