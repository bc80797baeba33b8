"""
League membership and manual ledger adjustments.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from league.data_models.ledger import LedgerTransaction, TransactionType
from league.database.models import Match, MatchStatus, User, UserLeague, UserMatch
from league.operations.ledger_operations import LedgerOperations
from league.utils.exceptions import NotFoundError, ValidationError
from league.utils.logger import setup_logger
from league.utils.scoring import ScoreCalculator, SeatResult

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Registration:
    league_id: int
    user_id: str
    transactions: List[LedgerTransaction]
    cache_updated: bool


class LeagueOperations(LedgerOperations):
    """Membership lifecycle and administrative point adjustments."""

    async def register_player(self, league_id: int, user_id: str, time: Optional[datetime] = None) -> Registration:
        """
        Register a user in a league.

        Creates the membership and an INITIAL transaction worth the league's
        starting points. Matches of this league the user already completed
        before registering are settled into the ledger as well.

        Raises:
            NotFoundError: Unknown league or user
            ValidationError: User already registered
        """
        time = time or datetime.now(timezone.utc)

        async with self.db.transaction() as session:
            league = await self.db.get_league(league_id, session=session)
            if await session.get(User, user_id) is None:
                raise NotFoundError('user', user_id)
            if await session.get(UserLeague, (league_id, user_id)) is not None:
                raise ValidationError("Already registered")

            transactions = [LedgerTransaction(
                kind=TransactionType.INITIAL,
                user_id=user_id,
                league_id=league_id,
                delta=Decimal(league.starting_points),
                time=time
            )]

            played = await session.execute(
                select(UserMatch)
                .join(Match, UserMatch.match_id == Match.id)
                .options(selectinload(UserMatch.match).selectinload(Match.ruleset))
                .where(
                    UserMatch.player_id == user_id,
                    Match.league_id == league_id,
                    Match.status == MatchStatus.COMPLETE
                )
            )
            for seat in played.scalars().all():
                ruleset = seat.match.ruleset
                result = SeatResult(
                    raw_score=seat.raw_score,
                    placement_min=seat.placement_min,
                    placement_max=seat.placement_max,
                    pt=ScoreCalculator.compute_player_pt(
                        seat.raw_score, ruleset.return_pts,
                        seat.placement_min, seat.placement_max, ruleset.uma_values
                    )
                )
                # chombo descriptions are not kept on the seat, only their count
                generated = ScoreCalculator.compute_transactions(
                    user_id=user_id,
                    league_id=league_id,
                    match_id=seat.match_id,
                    player_position=seat.player_position,
                    time=seat.match.time,
                    seat=result,
                    chombos=["Recorded before registration"] * (seat.chombos or 0),
                    chombo_delta=ruleset.chombo_delta
                )
                transactions.extend(generated.transactions)

            session.add(UserLeague(league_id=league_id, user_id=user_id))
            self.db.add_transactions(session, transactions)
            matches_required = league.matches_required

        logger.info(f"Registered user {user_id} in league {league_id} ({len(transactions)} transaction(s))")
        cache_updated = await self._refresh_leaderboard(league_id, matches_required, [user_id])
        return Registration(league_id, user_id, transactions, cache_updated)

    async def opt_into_soft_penalty(self, league_id: int, user_id: str) -> int:
        """
        Put a member under the soft penalty.

        The member receives the league's free chombo allowance and, at equal
        score, ranks behind members who did not opt in. Returns the allowance.
        """
        async with self.get_session() as session:
            league = await self.db.get_league(league_id, session=session)
            membership = await self.db.get_membership(session, league_id, user_id)
            if membership.soft_penalty:
                raise ValidationError("Already under the soft penalty")
            membership.free_chombos = league.soft_penalty_cutoff

        logger.info(f"User {user_id} opted into the soft penalty in league {league_id} ({league.soft_penalty_cutoff} free chombos)")
        return league.soft_penalty_cutoff

    async def adjust_score(
        self,
        league_id: int,
        user_id: str,
        delta,
        description: str,
        time: Optional[datetime] = None
    ) -> LedgerTransaction:
        """Append an administrative OTHER_ADJUSTMENT transaction and republish the member."""
        transaction = LedgerTransaction(
            kind=TransactionType.OTHER_ADJUSTMENT,
            user_id=user_id,
            league_id=league_id,
            delta=Decimal(delta),
            time=time or datetime.now(timezone.utc),
            description=description
        )

        async with self.get_session() as session:
            league = await self.db.get_league(league_id, session=session)
            await self.db.get_membership(session, league_id, user_id)
            self.db.add_transactions(session, [transaction])
            matches_required = league.matches_required

        logger.info(f"Adjusted user {user_id} in league {league_id} by {transaction.delta}: {description}")
        await self._refresh_leaderboard(league_id, matches_required, [user_id])
        return transaction
