"""
Services package for the league leaderboard core.
"""

from .base import BaseService, RetryPolicy, with_backoff
from .leaderboard import LeaderboardService
from .leaderboard_cache import LeaderboardCacheService

__all__ = ['BaseService', 'RetryPolicy', 'with_backoff', 'LeaderboardService', 'LeaderboardCacheService']
