import os
from dotenv import load_dotenv

from league.constants import CacheConstants

load_dotenv()

class Config:
    """League service configuration settings"""
    
    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///league.db')
    
    # Cache settings
    REDIS_URL = os.getenv('REDIS_URL')
    LEADERBOARD_CACHE_PREFIX = os.getenv('LEADERBOARD_CACHE_PREFIX', 'league')
    LEADERBOARD_CACHE_TTL = int(os.getenv('LEADERBOARD_CACHE_TTL', CacheConstants.DEFAULT_CACHE_TTL))
    CACHE_RETRY_ATTEMPTS = int(os.getenv('CACHE_RETRY_ATTEMPTS', CacheConstants.DEFAULT_RETRY_ATTEMPTS))
    CACHE_RETRY_INITIAL_BACKOFF = float(os.getenv('CACHE_RETRY_INITIAL_BACKOFF', CacheConstants.DEFAULT_INITIAL_BACKOFF))
    
    # Ranking settings
    RANK_TIEBREAK_SALT = os.getenv('RANK_TIEBREAK_SALT', 'riichi-league-tiebreak')
    
    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'
    
    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if cls.LEADERBOARD_CACHE_TTL <= 0:
            raise ValueError("LEADERBOARD_CACHE_TTL must be positive")
        if cls.CACHE_RETRY_ATTEMPTS < 1:
            raise ValueError("CACHE_RETRY_ATTEMPTS must be at least 1")
        if cls.CACHE_RETRY_INITIAL_BACKOFF < 0:
            raise ValueError("CACHE_RETRY_INITIAL_BACKOFF cannot be negative")
        if not cls.DEBUG and not cls.REDIS_URL:
            raise ValueError("REDIS_URL is required outside of debug mode")
