"""
Ledger data models.

Immutable transfer objects for point transactions read from (or about to be
written to) the league ledger.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class TransactionType(Enum):
    MATCH_RESULT = "match_result"
    CHOMBO = "chombo"
    INITIAL = "initial"
    OTHER_ADJUSTMENT = "other_adjustment"


@dataclass(frozen=True)
class MatchRef:
    """The seat of a completed match a transaction was generated from."""
    match_id: int
    player_position: int
    raw_score: int
    placement_min: int
    placement_max: int


@dataclass(frozen=True)
class LedgerTransaction:
    """Single append-only ledger entry."""
    kind: TransactionType
    user_id: str
    league_id: int
    delta: Decimal
    time: datetime
    match_ref: Optional[MatchRef] = None
    description: Optional[str] = None
