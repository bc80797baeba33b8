"""
Match settlement for riichi league tables.

Turns one completed match's raw scores into ledger transactions: a point delta
per seat (raw score against return points plus the averaged uma of the
placement range) and one transaction per recorded chombo.

All point arithmetic is done with Decimal. A league folds thousands of these
deltas over its lifetime, so binary floats would drift.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from league.constants import ScoringConstants
from league.data_models.ledger import LedgerTransaction, MatchRef, TransactionType
from league.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatResult:
    """Settled result of one seat at the table."""
    raw_score: int
    placement_min: int
    placement_max: int
    pt: Decimal

    @property
    def is_tied(self) -> bool:
        return self.placement_min != self.placement_max


@dataclass(frozen=True)
class MatchTransactions:
    """Transactions generated for one player in one match."""
    transactions: List[LedgerTransaction]
    chombo_count: int  # occurrences counted against the free allowance


class ScoreCalculator:
    """Handles point settlement for completed matches"""

    @staticmethod
    def sum_table_scores(scores: Sequence[int], leftover_bets: int) -> int:
        return sum(scores) + leftover_bets

    @staticmethod
    def validate_match_scores(
        scores: Sequence[int],
        leftover_bets: int,
        start_pts: int,
        num_players: int
    ) -> List[int]:
        """
        Validate raw table input before any transaction is built.

        Args:
            scores: Raw score per seat, in seat order
            leftover_bets: Riichi sticks left on the table
            start_pts: Points every player starts the match with
            num_players: Seats at the table for this ruleset

        Returns:
            The scores as a list

        Raises:
            ValidationError: On wrong seat count, granularity or table sum
        """
        scores = list(scores)
        if len(scores) != num_players:
            raise ValidationError(f"Expected {num_players} players, got {len(scores)}")

        for score in scores:
            if score % ScoringConstants.SCORE_UNIT != 0:
                raise ValidationError(f"Score {score} is not a multiple of {ScoringConstants.SCORE_UNIT}")

        if leftover_bets < 0 or leftover_bets % ScoringConstants.LEFTOVER_BET_UNIT != 0:
            raise ValidationError(
                f"Leftover bets {leftover_bets} must be a non-negative multiple of {ScoringConstants.LEFTOVER_BET_UNIT}"
            )

        total = ScoreCalculator.sum_table_scores(scores, leftover_bets)
        if total != start_pts * num_players:
            raise ValidationError(
                f"Total score does not add up ({total} != {start_pts * num_players})"
            )

        return scores

    @staticmethod
    def compute_placements(scores: Sequence[int]) -> List[Tuple[int, int]]:
        """
        Compute the placement range of every seat.

        Tied scores share the closed range spanning all equal scores, so two
        players tied for first both get (1, 2).
        """
        placements = []
        for score in scores:
            better = sum(1 for other in scores if other > score)
            at_least = sum(1 for other in scores if other >= score)
            placements.append((1 + better, at_least))
        return placements

    @staticmethod
    def compute_player_pt(
        raw_score: int,
        return_pts: int,
        placement_min: int,
        placement_max: int,
        uma: Sequence[Decimal]
    ) -> Decimal:
        """Point delta: (raw - return) / 1000 plus the average uma over the placement range."""
        delta = Decimal(raw_score - return_pts) / ScoringConstants.POINTS_PER_PT
        shared_uma = uma[placement_min - 1:placement_max]
        adjustment = sum(shared_uma, Decimal(0)) / Decimal(placement_max - placement_min + 1)
        return delta + adjustment

    @staticmethod
    def compute_table_pts(
        scores: Sequence[int],
        return_pts: int,
        uma: Sequence[Decimal]
    ) -> List[SeatResult]:
        """Settle every seat of a table, keeping seat order."""
        if len(scores) != len(uma):
            raise ValueError("Number of player scores does not match uma length")

        results = []
        for raw_score, (placement_min, placement_max) in zip(scores, ScoreCalculator.compute_placements(scores)):
            results.append(SeatResult(
                raw_score=raw_score,
                placement_min=placement_min,
                placement_max=placement_max,
                pt=ScoreCalculator.compute_player_pt(
                    raw_score, return_pts, placement_min, placement_max, uma
                )
            ))
        return results

    @staticmethod
    def compute_transactions(
        user_id: str,
        league_id: int,
        match_id: int,
        player_position: int,
        time: datetime,
        seat: SeatResult,
        chombos: Sequence[str],
        chombo_delta: Decimal,
        free_chombos: Optional[int] = None
    ) -> MatchTransactions:
        """
        Build the ledger entries of one player for one match.

        The first ``free_chombos`` chombos cost nothing; every later one costs
        ``chombo_delta``. ``free_chombos`` of None means the player has no
        allowance at all.
        """
        match_ref = MatchRef(
            match_id=match_id,
            player_position=player_position,
            raw_score=seat.raw_score,
            placement_min=seat.placement_min,
            placement_max=seat.placement_max
        )

        transactions = [LedgerTransaction(
            kind=TransactionType.MATCH_RESULT,
            user_id=user_id,
            league_id=league_id,
            delta=seat.pt,
            time=time,
            match_ref=match_ref
        )]

        allowance = free_chombos or 0
        for index, description in enumerate(chombos):
            delta = Decimal(0) if index < allowance else Decimal(chombo_delta)
            transactions.append(LedgerTransaction(
                kind=TransactionType.CHOMBO,
                user_id=user_id,
                league_id=league_id,
                delta=delta,
                time=time,
                match_ref=match_ref,
                description=description
            ))

        if chombos:
            logger.debug(
                f"User {user_id} match {match_id}: {len(chombos)} chombo(s), "
                f"{max(0, len(chombos) - allowance)} charged"
            )

        return MatchTransactions(transactions=transactions, chombo_count=len(chombos))

    @staticmethod
    def remaining_free_chombos(free_chombos: Optional[int], chombo_count: int) -> Optional[int]:
        """Allowance left after a match. Players without an allowance stay at None."""
        if free_chombos is None:
            return None
        return max(0, free_chombos - chombo_count)
