"""Shared fixtures: a throwaway SQLite ledger and an in-memory Redis."""

import os

# Config is read at import time
os.environ.setdefault('LOG_TO_FILE', 'false')
os.environ.setdefault('DEBUG', 'false')

from datetime import datetime, timedelta
from decimal import Decimal

import fakeredis
import pytest

from league.database.database import Database
from league.operations.league_operations import LeagueOperations
from league.operations.match_operations import MatchOperations, MatchPlayer
from league.services.base import RetryPolicy
from league.services.leaderboard import LeaderboardService
from league.services.leaderboard_cache import LeaderboardCacheService
from league.utils.cache_keys import LeaderboardKeyBuilder

TEST_SALT = 'test-salt'
UMA = [Decimal(15), Decimal(5), Decimal(-5), Decimal(-15)]
BASE_TIME = datetime(2024, 3, 1, 19, 0, 0)


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def fast_retry():
    return RetryPolicy(attempts=3, initial_backoff=0.001)


@pytest.fixture
async def cache(db, redis_client, fast_retry):
    service = LeaderboardCacheService(
        db,
        redis_client=redis_client,
        key_builder=LeaderboardKeyBuilder('test'),
        ttl=600,
        retry_policy=fast_retry
    )
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
def matches(db, cache):
    return MatchOperations(db, cache)


@pytest.fixture
def leagues(db, cache):
    return LeagueOperations(db, cache)


@pytest.fixture
def exact(db):
    return LeaderboardService(db, salt=TEST_SALT)


@pytest.fixture
async def ruleset(db):
    return await db.create_ruleset(
        name='EMA 4p',
        start_pts=25000,
        return_pts=30000,
        uma=UMA,
        chombo_delta=Decimal(-20)
    )


@pytest.fixture
async def league(db, ruleset):
    return await db.create_league(
        name='Spring League',
        ruleset_id=ruleset.id,
        matches_required=2,
        starting_points=0,
        soft_penalty_cutoff=2
    )


@pytest.fixture
async def members(db, league, leagues):
    """Four registered members of the league: alice, bob, carol, dave."""
    user_ids = ['alice', 'bob', 'carol', 'dave']
    for user_id in user_ids:
        await db.create_user(user_id, user_id.capitalize())
        await leagues.register_player(league.id, user_id, time=BASE_TIME)
    return user_ids


@pytest.fixture
def play(matches, league):
    """Create and record one match of the league."""
    async def _play(user_ids, scores, chombos=None, leftover_bets=0, offset_minutes=0):
        match = await matches.create_match(league.id, [MatchPlayer.user(user_id) for user_id in user_ids])
        return await matches.record_match(
            match.id,
            scores,
            leftover_bets=leftover_bets,
            chombos=chombos,
            time=BASE_TIME + timedelta(minutes=offset_minutes)
        )
    return _play
