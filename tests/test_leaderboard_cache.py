from datetime import datetime
from decimal import Decimal

import pytest
from redis.exceptions import WatchError

from league.data_models.leaderboard import Aggregate
from league.services.leaderboard_cache import (
    LeaderboardCacheService, compute_leaderboard_score, deserialize_aggregate, serialize_aggregate
)
from league.utils.exceptions import ConsistencyViolation, NotFoundError, TransientCacheError

FIRST_TABLE = [40000, 30000, 20000, 10000]    # +25, +5, -15, -35
SECOND_TABLE = [35000, 25000, 25000, 15000]   # +20, -5, -5, -30


def summary(snapshot):
    return [(entry.user_id, entry.rank, entry.aggregate.num_matches) for entry in snapshot.entries]


class TestPackedScore:
    def test_score_dominates(self):
        low = Aggregate(score=Decimal('10.5'), placements={1: 1000}, highscore=100000)
        high = Aggregate(score=Decimal('11'))
        assert compute_leaderboard_score(high) > compute_leaderboard_score(low)

    def test_firsts_then_highscore_break_score_ties(self):
        base = Aggregate(score=Decimal(20), placements={1: 2}, highscore=40000)
        more_firsts = Aggregate(score=Decimal(20), placements={1: 3}, highscore=20000)
        higher = Aggregate(score=Decimal(20), placements={1: 2}, highscore=45000)
        assert compute_leaderboard_score(more_firsts) > compute_leaderboard_score(base)
        assert compute_leaderboard_score(higher) > compute_leaderboard_score(base)

    def test_integer_part_is_score_at_one_hundred_twentieth(self):
        packed = compute_leaderboard_score(Aggregate(score=Decimal('-12.5'), highscore=None))
        assert packed == Decimal(-1500)

    def test_layout(self):
        packed = compute_leaderboard_score(Aggregate(score=Decimal(1), placements={1: 3}, highscore=0))
        assert packed == Decimal(120) + (Decimal(32768) / 65536 + 3) / 1024

    def test_clamping(self):
        huge = Aggregate(score=Decimal(0), placements={1: 5000}, highscore=99999999)
        packed = compute_leaderboard_score(huge)
        assert packed == (Decimal(65535) / 65536 + 1023) / 1024
        assert packed < 1


def test_aggregate_serialization():
    aggregate = Aggregate(
        score=Decimal('-12.500000'),
        num_matches=3,
        highscore=41200,
        placements={1: 1, 4: 2},
        last_activity_time=datetime(2024, 3, 1, 21, 15)
    )
    assert deserialize_aggregate(serialize_aggregate(aggregate)) == aggregate
    assert deserialize_aggregate(serialize_aggregate(Aggregate())) == Aggregate()


async def test_cold_read_regenerates_from_ledger(cache, redis_client, league, members):
    keys = cache.keys.for_league(league.id)
    assert not await redis_client.exists(keys.updated)

    snapshot = await cache.get_leaderboard(league.id)

    assert sorted(entry.user_id for entry in snapshot.entries) == sorted(members)
    assert all(entry.rank is None for entry in snapshot.entries)
    assert snapshot.last_updated == int(await redis_client.get(keys.updated))
    for key in keys.all():
        if await redis_client.exists(key):
            assert 0 < await redis_client.ttl(key) <= 600


async def test_cached_order_matches_exact_ranking(cache, exact, league, members, play):
    await play(members, FIRST_TABLE)
    await play(members, SECOND_TABLE, offset_minutes=60)

    snapshot = await cache.get_leaderboard(league.id)
    assert summary(snapshot) == [('alice', 1, 2), ('bob', 2, 2), ('carol', 3, 2), ('dave', 4, 2)]
    assert [entry.aggregate.score for entry in snapshot.entries] == [
        Decimal(45), Decimal(0), Decimal(-20), Decimal(-65)
    ]
    assert snapshot.entries[0].aggregate.num_firsts == 2
    assert snapshot.entries[0].aggregate.highscore == 40000

    computed = await exact.compute_leaderboard(league.id)
    assert [entry.user_id for entry in computed.ranked] == [entry.user_id for entry in snapshot.entries]
    assert [entry.aggregate for entry in computed.ranked] == [entry.aggregate for entry in snapshot.entries]


async def test_partial_invalidation_moves_users_into_ranked_set(cache, league, members, play):
    before = await cache.get_leaderboard(league.id)
    assert all(entry.rank is None for entry in before.entries)

    await play(members, FIRST_TABLE)
    after_first = await cache.get_leaderboard(league.id)
    assert all(entry.rank is None for entry in after_first.entries)
    assert [entry.user_id for entry in after_first.entries][0] in members

    await play(members, SECOND_TABLE, offset_minutes=60)
    after_second = await cache.get_leaderboard(league.id)
    assert summary(after_second) == [('alice', 1, 2), ('bob', 2, 2), ('carol', 3, 2), ('dave', 4, 2)]
    assert after_second.last_updated >= before.last_updated


async def test_partial_invalidation_leaves_other_users_alone(cache, db, league, members, play):
    await play(members, FIRST_TABLE)
    await play(members, SECOND_TABLE, offset_minutes=60)
    await cache.get_leaderboard(league.id)

    await db.create_user('erin', 'Erin')
    await db.create_user('frank', 'Frank')
    await play(['alice', 'bob', 'erin', 'frank'], FIRST_TABLE, offset_minutes=120)

    snapshot = await cache.get_leaderboard(league.id)
    # erin and frank are not members; only alice and bob changed
    assert [entry.user_id for entry in snapshot.entries] == ['alice', 'bob', 'carol', 'dave']
    by_id = {entry.user_id: entry.aggregate for entry in snapshot.entries}
    assert by_id['alice'].num_matches == 3
    assert by_id['bob'].num_matches == 3
    assert by_id['carol'].num_matches == 2


async def test_invalidate_is_idempotent(cache, league, members, play):
    await play(members, FIRST_TABLE)
    await play(members, SECOND_TABLE, offset_minutes=60)

    await cache.invalidate(league.id, league.matches_required)
    first = await cache.get_leaderboard(league.id)
    await cache.invalidate(league.id, league.matches_required)
    await cache.invalidate(league.id, league.matches_required, ['alice', 'dave'])
    second = await cache.get_leaderboard(league.id)

    assert first.entries == second.entries


async def test_full_invalidation_drops_unknown_members(cache, redis_client, league, members):
    await cache.get_leaderboard(league.id)
    keys = cache.keys.for_league(league.id)
    await redis_client.zadd(keys.unranked, {'ghost': 99})
    await redis_client.hset(keys.records, 'ghost', serialize_aggregate(Aggregate(num_matches=99)))

    await cache.invalidate(league.id, league.matches_required)

    snapshot = await cache.get_leaderboard(league.id)
    assert 'ghost' not in [entry.user_id for entry in snapshot.entries]
    assert not await redis_client.hexists(keys.records, 'ghost')


async def test_partial_invalidation_of_uncached_league_is_skipped(cache, redis_client, league, members):
    await cache.invalidate(league.id, league.matches_required, ['alice'])
    for key in cache.keys.for_league(league.id).all():
        assert not await redis_client.exists(key)


async def test_last_update_and_staleness(cache, league, members):
    assert await cache.get_last_update(league.id) is None
    assert await cache.is_stale(league.id, 0)

    snapshot = await cache.get_leaderboard(league.id)
    assert await cache.get_last_update(league.id) == snapshot.last_updated
    assert not await cache.is_stale(league.id, snapshot.last_updated)
    assert not await cache.is_stale(league.id, snapshot.last_updated - 1)
    assert await cache.is_stale(league.id, snapshot.last_updated + 1)


async def test_missing_record_is_a_consistency_violation(cache, redis_client, league, members):
    await cache.get_leaderboard(league.id)
    await redis_client.hdel(cache.keys.for_league(league.id).records, 'bob')

    with pytest.raises(ConsistencyViolation) as excinfo:
        await cache.get_leaderboard(league.id)
    assert excinfo.value.user_id == 'bob'


async def test_unknown_league(cache):
    with pytest.raises(NotFoundError):
        await cache.get_leaderboard(999)


async def test_read_retries_watch_conflicts(cache, league, members, monkeypatch):
    await cache.get_leaderboard(league.id)
    original = cache._read_snapshot
    conflicts = []

    async def conflicting(keys):
        if len(conflicts) < 2:
            conflicts.append(keys.league_id)
            raise WatchError('records changed')
        return await original(keys)

    monkeypatch.setattr(cache, '_read_snapshot', conflicting)
    snapshot = await cache.get_leaderboard(league.id)
    assert len(conflicts) == 2
    assert len(snapshot.entries) == 4


async def test_write_conflicts_exhaust_the_budget(cache, league, members, monkeypatch):
    async def always_conflicting(*args, **kwargs):
        raise WatchError('updated changed')

    monkeypatch.setattr(cache, '_write_entries', always_conflicting)
    with pytest.raises(TransientCacheError):
        await cache.invalidate(league.id, league.matches_required)


async def test_service_must_be_started(db, redis_client, league):
    service = LeaderboardCacheService(db, redis_client=redis_client)
    with pytest.raises(TransientCacheError):
        await service.get_leaderboard(league.id)


async def test_injected_client_survives_stop(db, redis_client):
    service = LeaderboardCacheService(db, redis_client=redis_client)
    await service.start()
    await service.stop()
    assert await redis_client.ping()


def interleave_writes(monkeypatch, client, write, times=None):
    """Run ``write`` on another connection right before each pipeline EXEC."""
    original = client.pipeline
    writes = []

    def pipeline(*args, **kwargs):
        pipe = original(*args, **kwargs)
        execute = pipe.execute

        async def execute_after_write(*exec_args, **exec_kwargs):
            if times is None or len(writes) < times:
                writes.append(1)
                await write()
            return await execute(*exec_args, **exec_kwargs)

        pipe.execute = execute_after_write
        return pipe

    monkeypatch.setattr(client, 'pipeline', pipeline)
    return writes


async def test_concurrent_record_write_forces_a_fresh_read(cache, redis_client, league, members, monkeypatch):
    await cache.get_leaderboard(league.id)
    keys = cache.keys.for_league(league.id)
    rewritten = Aggregate(score=Decimal(99), num_matches=1, highscore=52000, placements={1: 1})

    async def rewrite_bob():
        await redis_client.hset(keys.records, 'bob', serialize_aggregate(rewritten))

    writes = interleave_writes(monkeypatch, redis_client, rewrite_bob, times=1)
    snapshot = await cache.get_leaderboard(league.id)

    assert writes == [1]
    bob = next(entry for entry in snapshot.entries if entry.user_id == 'bob')
    assert bob.aggregate == rewritten


async def test_constant_record_writes_exhaust_the_read_budget(cache, redis_client, fast_retry, league, members, monkeypatch):
    await cache.get_leaderboard(league.id)
    keys = cache.keys.for_league(league.id)

    async def touch_records():
        await redis_client.hset(keys.records, 'bob', serialize_aggregate(Aggregate()))

    writes = interleave_writes(monkeypatch, redis_client, touch_records)
    with pytest.raises(TransientCacheError) as excinfo:
        await cache.get_leaderboard(league.id)

    assert len(writes) == fast_retry.attempts
    assert excinfo.value.attempts == fast_retry.attempts
    assert isinstance(excinfo.value.__cause__, WatchError)


async def test_regeneration_between_check_and_exec_retries_partial_write(cache, redis_client, league, members, monkeypatch):
    await cache.get_leaderboard(league.id)
    keys = cache.keys.for_league(league.id)
    await redis_client.hset(keys.records, 'alice', serialize_aggregate(Aggregate(score=Decimal(-1))))

    async def restamp():
        await redis_client.set(keys.updated, 1)

    writes = interleave_writes(monkeypatch, redis_client, restamp, times=1)
    await cache.invalidate(league.id, league.matches_required, ['alice'])

    assert writes == [1]
    assert deserialize_aggregate(await redis_client.hget(keys.records, 'alice')).score == Decimal(0)
    assert int(await redis_client.get(keys.updated)) > 1


async def test_constant_regenerations_exhaust_the_write_budget(cache, redis_client, fast_retry, league, members, monkeypatch):
    await cache.get_leaderboard(league.id)
    keys = cache.keys.for_league(league.id)

    async def restamp():
        await redis_client.set(keys.updated, 1)

    writes = interleave_writes(monkeypatch, redis_client, restamp)
    with pytest.raises(TransientCacheError) as excinfo:
        await cache.invalidate(league.id, league.matches_required, ['alice'])

    assert len(writes) == fast_retry.attempts
    assert isinstance(excinfo.value.__cause__, WatchError)
