"""
Custom exceptions for the leaderboard core with user-friendly error messages.
"""

class LeaderboardException(Exception):
    """Base exception for leaderboard-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ValidationError(LeaderboardException):
    """Raised when match input is malformed. Never retried."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid match input: {reason}",
            f"❌ {reason}"
        )
        self.reason = reason

class NotFoundError(LeaderboardException):
    """Raised when a referenced league, user or match is absent from the ledger."""
    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity.capitalize()} '{entity_id}' not found",
            f"❌ {entity.capitalize()} not found!"
        )
        self.entity = entity
        self.entity_id = entity_id

class TransientCacheError(LeaderboardException):
    """Raised when the cache retry budget is exhausted or the store is unreachable."""
    def __init__(self, operation: str, attempts: int = 0, details: str = None):
        message = f"Cache operation '{operation}' failed after {attempts} attempts"
        if details:
            message = f"{message}: {details}"
        super().__init__(
            message,
            "❌ The leaderboard is busy right now. Please try again."
        )
        self.operation = operation
        self.attempts = attempts

class ConsistencyViolation(LeaderboardException):
    """Raised when a sorted set references a user with no cached record."""
    def __init__(self, league_id: int, user_id: str):
        super().__init__(
            f"League {league_id}: user '{user_id}' is ranked but has no cached record",
            "❌ The leaderboard is in an inconsistent state. Please report this."
        )
        self.league_id = league_id
        self.user_id = user_id
