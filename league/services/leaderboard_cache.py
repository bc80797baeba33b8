"""
Read-through leaderboard cache on Redis.

Every league owns four co-located keys (see ``league.utils.cache_keys``):

- ``records``      hash        user id -> serialized Aggregate
- ``leaderboard``  sorted set  ranked-eligible users by packed score
- ``unranked``     sorted set  everyone else by number of matches
- ``updated``      string      epoch milliseconds of the last write

All four share one TTL and are always written in a single MULTI/EXEC, so a
reader never sees half of a write. ``updated`` is the only existence signal.

There is no lock between writers. Two concurrent regenerations of the same
league both succeed and the later one wins. Readers watch ``records`` so a
single read never combines the sorted sets of one write with the records of
another; a conflicting read is retried under the service retry policy.
"""

import json
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from redis.exceptions import WatchError, ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from league.config import Config
from league.constants import PackedScoreConstants
from league.data_models.leaderboard import Aggregate, LeaderboardSnapshot, RankedEntry
from league.services.base import BaseService, RetryPolicy
from league.utils.aggregation import aggregate_transactions
from league.utils.cache_keys import LeaderboardKeyBuilder, LeaderboardKeys
from league.utils.exceptions import ConsistencyViolation, TransientCacheError
from league.utils.logger import setup_logger
from league.utils.redis_utils import RedisUtils

logger = setup_logger(__name__)


class CacheVanishedError(Exception):
    """The league's keys expired or were evicted between a write and the following read."""


# Failures worth another attempt: optimistic conflicts and an unreachable store
STORE_ERRORS = (WatchError, RedisConnectionError, RedisTimeoutError)
REGENERATION_ERRORS = STORE_ERRORS + (CacheVanishedError,)


def compute_leaderboard_score(aggregate: Aggregate) -> Decimal:
    """
    Pack score, highscore and 1st place count into one sortable number.

    The integer part is the score at a resolution of 1/120 point. The
    fraction holds the 1st place count (clamped to [0, 1023]) and, below it,
    the highscore in units of 100 shifted into [0, 65535] and clamped. Only
    the score survives exactly; soft penalty and the hash tiebreak are not
    represented at all.
    """
    c = PackedScoreConstants
    score_rescaled = (aggregate.score * c.SCORE_RESOLUTION).quantize(Decimal(1), rounding=ROUND_HALF_UP)

    num_firsts = min(max(0, aggregate.num_firsts), c.NUM_FIRSTS_RANGE - 1)

    if aggregate.highscore is None:
        highscore = Decimal(0)
    else:
        highscore = Decimal(aggregate.highscore) / c.HIGHSCORE_RESOLUTION + c.HIGHSCORE_RANGE // 2
        highscore = min(max(Decimal(0), highscore), Decimal(c.HIGHSCORE_RANGE - 1))

    fraction = (highscore / c.HIGHSCORE_RANGE + num_firsts) / c.NUM_FIRSTS_RANGE
    return score_rescaled + fraction


def serialize_aggregate(aggregate: Aggregate) -> str:
    return json.dumps({
        'score': str(aggregate.score),
        'num_matches': aggregate.num_matches,
        'highscore': aggregate.highscore,
        'placements': {str(placement): count for placement, count in aggregate.placements.items()},
        'last_activity_time': aggregate.last_activity_time.isoformat() if aggregate.last_activity_time else None,
    }, sort_keys=True)


def deserialize_aggregate(payload: str) -> Aggregate:
    data = json.loads(payload)
    last_activity = data.get('last_activity_time')
    return Aggregate(
        score=Decimal(data['score']),
        num_matches=data['num_matches'],
        highscore=data['highscore'],
        placements={int(placement): count for placement, count in data['placements'].items()},
        last_activity_time=datetime.fromisoformat(last_activity) if last_activity else None
    )


class LeaderboardCacheService(BaseService):
    """Serves league leaderboards from Redis, regenerating them from the ledger on a miss."""

    def __init__(
        self,
        database,
        redis_client=None,
        redis_url: Optional[str] = None,
        key_builder: Optional[LeaderboardKeyBuilder] = None,
        ttl: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        super().__init__(database, retry_policy)
        self.redis_client = redis_client
        self.redis_url = redis_url
        self._owns_client = redis_client is None
        self.keys = key_builder or LeaderboardKeyBuilder()
        self.ttl = ttl or Config.LEADERBOARD_CACHE_TTL
        self._started = False

    # Lifecycle
    async def start(self):
        """Connect to Redis unless a client was injected."""
        if self._started:
            return
        if self.redis_client is None:
            self.redis_client = await RedisUtils.create_redis_client(self.redis_url)
            if self.redis_client is None:
                raise TransientCacheError('start', 1, 'Redis is not configured or not reachable')
        self._started = True
        logger.info(f"Leaderboard cache started (prefix '{self.keys.prefix}', ttl {self.ttl}s)")

    async def stop(self):
        """Close the Redis connection if this service opened it."""
        if self._owns_client and self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        self._started = False
        logger.info("Leaderboard cache stopped")

    def _client(self):
        if not self._started:
            raise TransientCacheError('cache access', 0, 'leaderboard cache service is not started')
        return self.redis_client

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    # Read path
    async def get_leaderboard(self, league_id: int) -> LeaderboardSnapshot:
        """
        Get a league's leaderboard, regenerating the cache from the ledger on a miss.

        Raises:
            NotFoundError: The league does not exist (cold path only)
            TransientCacheError: Retry or regeneration budget exhausted
            ConsistencyViolation: A ranked user has no cached record
        """
        keys = self.keys.for_league(league_id)
        snapshot = await self._get_cached_leaderboard(keys)
        if snapshot is not None:
            return snapshot

        logger.info(f"League {league_id}: leaderboard cache miss, regenerating")

        async def regenerate_and_read():
            matches_required = await self.db.get_matches_required(league_id)
            await self._regenerate(keys, matches_required)
            regenerated = await self._get_cached_leaderboard(keys)
            if regenerated is None:
                raise CacheVanishedError(f"league {league_id} vanished right after regeneration")
            return regenerated

        return await self.execute_with_retry(
            regenerate_and_read, REGENERATION_ERRORS, f"regenerate leaderboard {league_id}"
        )

    async def _get_cached_leaderboard(self, keys: LeaderboardKeys) -> Optional[LeaderboardSnapshot]:
        """Cached snapshot, or None when the league is not cached."""
        client = self._client()

        async def read_once():
            if not await client.exists(keys.updated):
                return None
            return await self._read_snapshot(keys)

        return await self.execute_with_retry(read_once, STORE_ERRORS, f"read leaderboard {keys.league_id}")

    async def _read_snapshot(self, keys: LeaderboardKeys) -> Optional[LeaderboardSnapshot]:
        """One optimistic read. Raises WatchError if ``records`` changed meanwhile."""
        async with self._client().pipeline(transaction=True) as pipe:
            await pipe.watch(keys.records)
            ranked = await pipe.zrevrangebyscore(keys.leaderboard, '+inf', '-inf')
            unranked = await pipe.zrevrangebyscore(keys.unranked, '+inf', '-inf')
            updated = await pipe.get(keys.updated)
            if updated is None:
                return None

            user_ids = list(ranked) + list(unranked)
            pipe.multi()
            for key in keys.all():
                pipe.expire(key, self.ttl)
            if user_ids:
                pipe.hmget(keys.records, user_ids)
            results = await pipe.execute()

        records = results[len(keys.all())] if user_ids else []
        entries = []
        for index, (user_id, record) in enumerate(zip(user_ids, records)):
            if record is None:
                logger.error(f"League {keys.league_id}: '{user_id}' is in a sorted set but missing from records")
                raise ConsistencyViolation(keys.league_id, user_id)
            entries.append(RankedEntry(
                user_id=user_id,
                aggregate=deserialize_aggregate(record),
                rank=index + 1 if index < len(ranked) else None
            ))

        return LeaderboardSnapshot(entries=entries, last_updated=int(updated))

    async def get_last_update(self, league_id: int) -> Optional[int]:
        """Epoch milliseconds of the league's last cache write, or None if not cached."""
        keys = self.keys.for_league(league_id)
        client = self._client()

        async def read_updated():
            return await client.get(keys.updated)

        value = await self.execute_with_retry(read_updated, STORE_ERRORS, f"read update time {league_id}")
        return int(value) if value is not None else None

    async def is_stale(self, league_id: int, candidate_timestamp: int) -> bool:
        """True when ``candidate_timestamp`` is newer than the cached update, or nothing is cached."""
        last_update = await self.get_last_update(league_id)
        if last_update is None:
            return True
        return candidate_timestamp > last_update

    # Write path
    async def invalidate(
        self,
        league_id: int,
        matches_required: int,
        user_ids: Optional[Iterable[str]] = None
    ):
        """
        Recompute aggregates and republish them atomically.

        Args:
            league_id: League to update
            matches_required: Matches needed to enter the ranked set
            user_ids: Users to recompute; None rebuilds the whole league

        A partial invalidation of a league that is not cached is skipped: the
        next read regenerates the full population anyway.
        """
        keys = self.keys.for_league(league_id)
        full = user_ids is None
        if full:
            await self.db.get_league(league_id)
        else:
            user_ids = list(user_ids)
            if not user_ids:
                return

        members = await self.db.get_league_members(league_id, user_ids)
        aggregates = {member.user_id: aggregate_transactions(member.transactions) for member in members}

        async def write():
            return await self._write_entries(keys, matches_required, aggregates, full)

        written = await self.execute_with_retry(write, STORE_ERRORS, f"invalidate leaderboard {league_id}")
        if written:
            logger.info(f"League {league_id}: republished {len(aggregates)} record(s){' (full)' if full else ''}")
        else:
            logger.debug(f"League {league_id}: not cached, skipped invalidation of {len(user_ids)} user(s)")

    async def _regenerate(self, keys: LeaderboardKeys, matches_required: int):
        """Rebuild the whole league from the ledger."""
        members = await self.db.get_league_members(keys.league_id)
        aggregates = {member.user_id: aggregate_transactions(member.transactions) for member in members}
        await self._write_entries(keys, matches_required, aggregates, full=True)
        logger.info(f"League {keys.league_id}: regenerated leaderboard for {len(aggregates)} member(s)")

    async def _write_entries(
        self,
        keys: LeaderboardKeys,
        matches_required: int,
        aggregates: Dict[str, Aggregate],
        full: bool
    ) -> bool:
        """
        Publish aggregates in one MULTI/EXEC.

        A full write replaces the league's keys. A partial write watches
        ``updated`` and only applies while the league is cached. Returns
        False when a partial write found nothing to update.
        """
        ranked: List[str] = []
        unranked: List[str] = []
        for user_id, aggregate in aggregates.items():
            (ranked if aggregate.num_matches >= matches_required else unranked).append(user_id)

        async with self._client().pipeline(transaction=True) as pipe:
            if not full:
                await pipe.watch(keys.updated)
                if not await pipe.exists(keys.updated):
                    return False
                pipe.multi()
            else:
                pipe.delete(keys.leaderboard, keys.records, keys.unranked)

            if aggregates:
                pipe.hset(keys.records, mapping={
                    user_id: serialize_aggregate(aggregate) for user_id, aggregate in aggregates.items()
                })

            if ranked:
                pipe.zrem(keys.unranked, *ranked)
                pipe.zadd(keys.leaderboard, {
                    user_id: '{:f}'.format(compute_leaderboard_score(aggregates[user_id])) for user_id in ranked
                })

            if unranked:
                pipe.zrem(keys.leaderboard, *unranked)
                pipe.zadd(keys.unranked, {
                    user_id: aggregates[user_id].num_matches for user_id in unranked
                })

            pipe.set(keys.updated, self._now_ms())
            for key in keys.all():
                pipe.expire(key, self.ttl)
            await pipe.execute()

        return True
