"""
Ledger → aggregate fold.

The fold is commutative and associative with ``EMPTY_AGGREGATE`` as identity,
so a user's transactions can be aggregated in any order, in any partition,
and the partial results merged afterwards.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional

from league.data_models.leaderboard import Aggregate
from league.data_models.ledger import LedgerTransaction, TransactionType

EMPTY_AGGREGATE = Aggregate()


def _max_optional(a, b):
    """max() where None stands for negative infinity."""
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def aggregate_transaction(transaction: LedgerTransaction) -> Aggregate:
    """Aggregate of a single transaction."""
    if transaction.kind != TransactionType.MATCH_RESULT:
        return Aggregate(
            score=Decimal(transaction.delta),
            last_activity_time=transaction.time
        )

    match = transaction.match_ref
    if match is None:
        raise ValueError("Match result transaction without a linked match")

    placements: Dict[int, int] = {}
    if match.placement_min == match.placement_max:
        placements[match.placement_min] = 1

    return Aggregate(
        score=Decimal(transaction.delta),
        num_matches=1,
        highscore=match.raw_score,
        placements=placements,
        last_activity_time=transaction.time
    )


def merge_aggregates(a: Aggregate, b: Aggregate) -> Aggregate:
    """Combine two partial aggregates."""
    placements = dict(a.placements)
    for placement, count in b.placements.items():
        placements[placement] = placements.get(placement, 0) + count

    last_activity: Optional[datetime] = _max_optional(a.last_activity_time, b.last_activity_time)

    return Aggregate(
        score=a.score + b.score,
        num_matches=a.num_matches + b.num_matches,
        highscore=_max_optional(a.highscore, b.highscore),
        placements=placements,
        last_activity_time=last_activity
    )


def aggregate_transactions(transactions: Iterable[LedgerTransaction]) -> Aggregate:
    """Fold a user's transactions. Fetch order does not matter."""
    result = EMPTY_AGGREGATE
    for transaction in transactions:
        result = merge_aggregates(result, aggregate_transaction(transaction))
    return result
