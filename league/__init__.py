"""
League leaderboard core.

Folds the point ledger of a multi-event league into per-user aggregates,
ranks them, and serves the standings through a shared Redis cache.
"""

__version__ = "0.3.0"
