import asyncio
import logging
import sys
import traceback
from typing import Optional

from league.config import Config
from league.database.database import Database
from league.operations.league_operations import LeagueOperations
from league.operations.match_operations import MatchOperations
from league.services.leaderboard import LeaderboardService
from league.services.leaderboard_cache import LeaderboardCacheService
from league.utils.exceptions import LeaderboardException
from league.utils.logger import setup_logger

class LeagueApplication:
    """Owns the ledger, the leaderboard cache and the workflows built on them."""

    def __init__(self, database_url: Optional[str] = None, redis_client=None):
        self.logger = setup_logger(__name__)
        self.db = Database(database_url)
        self.leaderboard_cache = LeaderboardCacheService(self.db, redis_client=redis_client)
        self.leaderboard = LeaderboardService(self.db)
        self.matches = MatchOperations(self.db, self.leaderboard_cache)
        self.leagues = LeagueOperations(self.db, self.leaderboard_cache)

    async def start(self):
        """Initialize the ledger and connect the cache"""
        self.logger.info("Starting league leaderboard core...")
        await self.db.initialize()
        await self.leaderboard_cache.start()
        self.logger.info("League leaderboard core started")

    async def stop(self):
        """Cleanup on shutdown"""
        self.logger.info("Shutting down league leaderboard core...")
        await self.leaderboard_cache.stop()
        await self.db.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

def format_leaderboard(snapshot) -> str:
    lines = []
    for entry in snapshot.entries:
        rank = str(entry.rank) if entry.rank is not None else '-'
        agg = entry.aggregate
        lines.append(
            f"{rank:>4}  {entry.user_id:<24} {agg.score:>10.1f}  "
            f"{agg.num_matches:>3} matches  {agg.num_firsts:>3} 1sts"
        )
    return '\n'.join(lines)

async def main(argv=None):
    """Print the cached leaderboard of a league: python -m league.main <league_id>"""
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1 or not argv[0].isdigit():
        print("usage: python -m league.main <league_id>")
        return 2

    Config.validate()
    app = LeagueApplication()
    try:
        await app.start()
        snapshot = await app.leaderboard_cache.get_leaderboard(int(argv[0]))
        print(format_leaderboard(snapshot))
        return 0
    except LeaderboardException as e:
        print(e.user_message)
        return 1
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
        return 1
    finally:
        await app.stop()

def cli():
    sys.exit(asyncio.run(main()))

if __name__ == "__main__":
    cli()
