"""
Typed key builder for the per-league leaderboard cache.

Every league owns four keys sharing one hash tag, so they land in the same
cluster slot and can be used together in one MULTI/EXEC:

    {<prefix>:<league_id>}:updated
    {<prefix>:<league_id>}:leaderboard
    {<prefix>:<league_id>}:records
    {<prefix>:<league_id>}:unranked

Other services sharing the store rely on this layout byte for byte.
"""

from dataclasses import dataclass
from typing import Tuple

from league.config import Config
from league.constants import CacheConstants


@dataclass(frozen=True)
class LeaderboardKeys:
    """The key family of one league."""
    league_id: int
    updated: str
    leaderboard: str
    records: str
    unranked: str

    def all(self) -> Tuple[str, str, str, str]:
        return (self.updated, self.leaderboard, self.records, self.unranked)


class LeaderboardKeyBuilder:
    """Builds the key family for a league id under a fixed prefix."""

    def __init__(self, prefix: str = None):
        self.prefix = prefix if prefix is not None else Config.LEADERBOARD_CACHE_PREFIX

    def hash_tag(self, league_id: int) -> str:
        return f"{{{self.prefix}:{league_id}}}"

    def for_league(self, league_id: int) -> LeaderboardKeys:
        tag = self.hash_tag(league_id)
        return LeaderboardKeys(
            league_id=league_id,
            updated=f"{tag}:{CacheConstants.UPDATED_SUFFIX}",
            leaderboard=f"{tag}:{CacheConstants.LEADERBOARD_SUFFIX}",
            records=f"{tag}:{CacheConstants.RECORDS_SUFFIX}",
            unranked=f"{tag}:{CacheConstants.UNRANKED_SUFFIX}"
        )
