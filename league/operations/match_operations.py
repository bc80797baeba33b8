"""
Match Operations Module

Creates league matches and records their results. Recording settles the table
with the score calculator, replaces every ledger entry previously generated
for the match, and then republishes the affected players on the leaderboard.

Recording an already completed match is an edit: its transactions are
deleted and regenerated, never patched in place.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import delete, select

from league.database.models import LeagueTransaction, Match, MatchStatus, Ruleset, User, UserLeague, UserMatch
from league.operations.ledger_operations import LedgerOperations
from league.utils.exceptions import NotFoundError, ValidationError
from league.utils.logger import setup_logger
from league.utils.scoring import ScoreCalculator

logger = setup_logger(__name__)


@dataclass(frozen=True)
class MatchPlayer:
    """A seat assignment: a registered user id or a guest placeholder name."""
    payload: str
    registered: bool = True

    @classmethod
    def user(cls, user_id: str) -> 'MatchPlayer':
        return cls(payload=user_id, registered=True)

    @classmethod
    def guest(cls, name: str) -> 'MatchPlayer':
        return cls(payload=name, registered=False)


@dataclass(frozen=True)
class RecordedMatch:
    """Outcome of recording a match."""
    match_id: int
    league_id: int
    affected_user_ids: List[str]
    transactions_created: int
    cache_updated: bool


class MatchOperations(LedgerOperations):
    """Match lifecycle: creation and result recording."""

    async def create_match(
        self,
        league_id: int,
        players: Sequence[MatchPlayer],
        ruleset_id: Optional[int] = None
    ) -> Match:
        """
        Create a pending match in a league.

        Args:
            league_id: League the match counts towards
            players: Seats in order; registered users must exist
            ruleset_id: Defaults to the league's default ruleset

        Raises:
            NotFoundError: Unknown league or registered user
            ValidationError: Wrong number of seats or duplicate players
        """
        async with self.db.transaction() as session:
            league = await self.db.get_league(league_id, session=session)
            ruleset_id = ruleset_id or league.default_ruleset_id
            ruleset = await session.get(Ruleset, ruleset_id)
            if ruleset is None:
                raise NotFoundError('ruleset', ruleset_id)

            if len(players) != ruleset.num_players:
                raise ValidationError(f"Expected {ruleset.num_players} players, got {len(players)}")

            registered = [player.payload for player in players if player.registered]
            guests = [player.payload for player in players if not player.registered]
            if len(set(registered)) + len(set(guests)) != len(players):
                raise ValidationError("The players are not unique")

            for user_id in registered:
                if await session.get(User, user_id) is None:
                    raise NotFoundError('user', user_id)

            match = Match(league_id=league_id, ruleset_id=ruleset_id, status=MatchStatus.PENDING)
            match.players = [
                UserMatch(
                    player_position=position,
                    player_id=player.payload if player.registered else None,
                    unregistered_placeholder=None if player.registered else player.payload
                )
                for position, player in enumerate(players, start=1)
            ]
            session.add(match)

        logger.info(f"Created match {match.id} in league {league_id} with {len(players)} players")
        return match

    async def record_match(
        self,
        match_id: int,
        scores: Sequence[int],
        leftover_bets: int = 0,
        chombos: Optional[Sequence[Sequence[str]]] = None,
        time: Optional[datetime] = None
    ) -> RecordedMatch:
        """
        Record (or re-record) the results of a match.

        Args:
            match_id: Match to record
            scores: Raw final score per seat, in seat order
            leftover_bets: Riichi sticks left on the table
            chombos: Per seat, one description per chombo committed
            time: When the match was played; defaults to now

        Raises:
            NotFoundError: Unknown match
            ValidationError: Malformed scores or chombo list
        """
        time = time or datetime.now(timezone.utc)

        async with self.db.transaction() as session:
            match = await self.db.get_match_for_update(session, match_id)
            ruleset = match.ruleset
            seats = match.players

            if len(seats) != ruleset.num_players:
                raise ValidationError(f"Match {match_id} has {len(seats)} seats, ruleset expects {ruleset.num_players}")

            scores = ScoreCalculator.validate_match_scores(
                scores, leftover_bets, ruleset.start_pts, ruleset.num_players
            )
            chombos = [list(seat_chombos) for seat_chombos in (chombos or [[] for _ in seats])]
            if len(chombos) != len(seats):
                raise ValidationError("Number of chombo lists does not match number of players")

            results = ScoreCalculator.compute_table_pts(scores, ruleset.return_pts, ruleset.uma_values)
            is_edit = match.status == MatchStatus.COMPLETE
            previous_chombos = {seat.player_id: seat.chombos or 0 for seat in seats if seat.player_id}

            match.status = MatchStatus.COMPLETE
            match.time = time
            match.leftover_bets = leftover_bets
            for seat, result, seat_chombos in zip(seats, results, chombos):
                seat.raw_score = result.raw_score
                seat.placement_min = result.placement_min
                seat.placement_max = result.placement_max
                seat.chombos = len(seat_chombos)

            # Edits regenerate every transaction of the match
            previous = await session.execute(
                select(LeagueTransaction.user_id).where(LeagueTransaction.match_id == match_id).distinct()
            )
            affected = set(previous.scalars().all())
            await session.execute(delete(LeagueTransaction).where(LeagueTransaction.match_id == match_id))

            registered_ids = [seat.player_id for seat in seats if seat.player_id is not None]
            memberships = {}
            if registered_ids:
                membership_result = await session.execute(
                    select(UserLeague).where(
                        UserLeague.league_id == match.league_id,
                        UserLeague.user_id.in_(registered_ids)
                    )
                )
                memberships = {m.user_id: m for m in membership_result.scalars().all()}

            created = 0
            for seat, result, seat_chombos in zip(seats, results, chombos):
                membership = memberships.get(seat.player_id)
                if membership is None:
                    # guests and non-members do not score in the league
                    continue

                free_chombos = membership.free_chombos
                if is_edit and free_chombos is not None:
                    # give back what the previous recording of this match consumed
                    free_chombos = min(
                        free_chombos + previous_chombos.get(seat.player_id, 0),
                        match.league.soft_penalty_cutoff
                    )

                generated = ScoreCalculator.compute_transactions(
                    user_id=seat.player_id,
                    league_id=match.league_id,
                    match_id=match_id,
                    player_position=seat.player_position,
                    time=time,
                    seat=result,
                    chombos=seat_chombos,
                    chombo_delta=ruleset.chombo_delta,
                    free_chombos=free_chombos
                )
                created += self.db.add_transactions(session, generated.transactions)
                membership.free_chombos = ScoreCalculator.remaining_free_chombos(
                    free_chombos, generated.chombo_count
                )
                affected.add(seat.player_id)

            league_id = match.league_id
            matches_required = match.league.matches_required

        affected_ids = sorted(affected)
        logger.info(
            f"{'Re-recorded' if is_edit else 'Recorded'} match {match_id} in league {league_id}: "
            f"{created} transaction(s) for {len(affected_ids)} player(s)"
        )

        cache_updated = await self._refresh_leaderboard(league_id, matches_required, affected_ids)
        return RecordedMatch(
            match_id=match_id,
            league_id=league_id,
            affected_user_ids=affected_ids,
            transactions_created=created,
            cache_updated=cache_updated
        )
