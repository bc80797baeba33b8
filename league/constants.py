"""
League-wide constants for the leaderboard core.

Magic numbers shared by the score calculator, the packed cache score and the
cache orchestrator live here so they stay consistent across modules.
"""

from decimal import Decimal


class ScoringConstants:
    """Constants related to match settlement."""
    
    # Raw scores are recorded in units of 100 points
    SCORE_UNIT = 100
    
    # Leftover riichi sticks are worth 1000 points each
    LEFTOVER_BET_UNIT = 1000
    
    # Raw score difference per league point
    POINTS_PER_PT = Decimal(1000)


class PackedScoreConstants:
    """Layout of the single sortable number stored in the leaderboard sorted set."""
    
    # Score resolution of 1/120 of a point (divisible by 2, 3, 4 and 5 way ties)
    SCORE_RESOLUTION = 120
    
    # Number of distinct 1st place counts representable before clamping
    NUM_FIRSTS_RANGE = 1024
    
    # Highscore is normalized to units of 100 and shifted into [0, 65536)
    HIGHSCORE_RESOLUTION = 100
    HIGHSCORE_RANGE = 65536


class CacheConstants:
    """Constants for leaderboard caching behavior."""
    
    # Shared TTL of all four per-league keys (seconds)
    DEFAULT_CACHE_TTL = 3 * 60 * 60  # 3 hours
    
    # Bounded retry budget for optimistic transactions
    DEFAULT_RETRY_ATTEMPTS = 5
    DEFAULT_INITIAL_BACKOFF = 0.05  # 50 ms, doubled per attempt
    
    # Fixed key suffixes, shared with any other service using the store
    UPDATED_SUFFIX = 'updated'
    LEADERBOARD_SUFFIX = 'leaderboard'
    RECORDS_SUFFIX = 'records'
    UNRANKED_SUFFIX = 'unranked'
