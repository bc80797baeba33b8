from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Numeric,
    ForeignKey, ForeignKeyConstraint, Enum as SQLEnum, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from decimal import Decimal
from enum import Enum
from typing import List
import json

from league.data_models.ledger import LedgerTransaction, MatchRef, TransactionType

Base = declarative_base()

# Ledger amounts: exact decimals, 6 places covers uma splits across 3-way ties
PointsType = Numeric(18, 6, asdecimal=True)

class MatchStatus(Enum):
    PENDING = "pending"
    COMPLETE = "complete"

class User(Base):
    __tablename__ = 'users'

    id = Column(String(64), primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100))
    is_active = Column(Boolean, default=True)

    # Metadata
    registered_at = Column(DateTime, default=func.now())

    # Relationships
    leagues = relationship("UserLeague", back_populates="user", cascade="all, delete-orphan")

    @property
    def name(self) -> str:
        return self.display_name or self.username

    def __repr__(self):
        return f"<User(id='{self.id}', username='{self.username}')>"

class Ruleset(Base):
    """Table rules used to settle a match."""
    __tablename__ = 'rulesets'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    num_players = Column(Integer, nullable=False, default=4)
    start_pts = Column(Integer, nullable=False)    # points each player starts with
    return_pts = Column(Integer, nullable=False)   # target points, the zero line of a delta
    chombo_delta = Column(PointsType, nullable=False)
    uma = Column(Text, nullable=False)             # JSON list of decimal strings, one per placement

    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint('num_players >= 2', name='check_ruleset_num_players'),
    )

    @property
    def uma_values(self) -> List[Decimal]:
        return [Decimal(value) for value in json.loads(self.uma)]

    @uma_values.setter
    def uma_values(self, values):
        self.uma = json.dumps([str(Decimal(value)) for value in values])

    def __repr__(self):
        return f"<Ruleset(name='{self.name}', players={self.num_players}, return={self.return_pts})>"

class League(Base):
    __tablename__ = 'leagues'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)

    # Ranking configuration
    matches_required = Column(Integer, nullable=False, default=0)  # minimum matches to be ranked
    starting_points = Column(PointsType, nullable=False, default=0)
    soft_penalty_cutoff = Column(Integer, nullable=False, default=0)  # free chombos granted on opt-in

    default_ruleset_id = Column(Integer, ForeignKey('rulesets.id'), nullable=False)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    default_ruleset = relationship("Ruleset")
    members = relationship("UserLeague", back_populates="league", cascade="all, delete-orphan")
    matches = relationship("Match", back_populates="league")

    def __repr__(self):
        return f"<League(id={self.id}, name='{self.name}', matches_required={self.matches_required})>"

class UserLeague(Base):
    """League membership."""
    __tablename__ = 'user_leagues'

    league_id = Column(Integer, ForeignKey('leagues.id'), primary_key=True)
    user_id = Column(String(64), ForeignKey('users.id'), primary_key=True)

    # Non-null means the user opted into the soft penalty
    free_chombos = Column(Integer, nullable=True)

    joined_at = Column(DateTime, default=func.now())

    # Relationships
    league = relationship("League", back_populates="members")
    user = relationship("User", back_populates="leagues")

    @property
    def soft_penalty(self) -> bool:
        return self.free_chombos is not None

    def __repr__(self):
        return f"<UserLeague(league_id={self.league_id}, user_id='{self.user_id}', free_chombos={self.free_chombos})>"

class Match(Base):
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False, index=True)
    ruleset_id = Column(Integer, ForeignKey('rulesets.id'), nullable=False)

    status = Column(SQLEnum(MatchStatus), default=MatchStatus.PENDING, nullable=False)
    time = Column(DateTime, nullable=True)       # set when results are recorded
    leftover_bets = Column(Integer, default=0)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    league = relationship("League", back_populates="matches")
    ruleset = relationship("Ruleset")
    players = relationship(
        "UserMatch",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="UserMatch.player_position"
    )

    def __repr__(self):
        return f"<Match(id={self.id}, league_id={self.league_id}, status={self.status})>"

class UserMatch(Base):
    """One seat at a match table: a registered user or a guest placeholder."""
    __tablename__ = 'user_matches'

    match_id = Column(Integer, ForeignKey('matches.id'), primary_key=True)
    player_position = Column(Integer, primary_key=True)  # seat, 1-based

    player_id = Column(String(64), ForeignKey('users.id'), nullable=True, index=True)
    unregistered_placeholder = Column(String(100), nullable=True)

    # Results, null until recorded
    raw_score = Column(Integer, nullable=True)
    placement_min = Column(Integer, nullable=True)
    placement_max = Column(Integer, nullable=True)
    chombos = Column(Integer, nullable=True)

    # Relationships
    match = relationship("Match", back_populates="players")
    player = relationship("User")

    __table_args__ = (
        CheckConstraint(
            '(player_id IS NULL) != (unregistered_placeholder IS NULL)',
            name='check_user_match_single_identity'
        ),
    )

    def __repr__(self):
        who = self.player_id or self.unregistered_placeholder
        return f"<UserMatch(match_id={self.match_id}, seat={self.player_position}, player='{who}')>"

class LeagueTransaction(Base):
    """
    Append-only point ledger of a league.

    Entries are never updated. When a match is edited, every entry generated
    from it is deleted and regenerated.
    """
    __tablename__ = 'league_transactions'

    id = Column(Integer, primary_key=True)
    type = Column(SQLEnum(TransactionType), nullable=False)
    user_id = Column(String(64), ForeignKey('users.id'), nullable=False)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    delta = Column(PointsType, nullable=False)
    time = Column(DateTime, nullable=False, default=func.now())
    description = Column(String(255), nullable=True)

    # Seat the transaction was generated from, for match results and chombos
    match_id = Column(Integer, nullable=True)
    player_position = Column(Integer, nullable=True)

    user_match = relationship("UserMatch")

    __table_args__ = (
        ForeignKeyConstraint(
            ['match_id', 'player_position'],
            ['user_matches.match_id', 'user_matches.player_position']
        ),
        Index('ix_league_transactions_league_user', 'league_id', 'user_id'),
        Index('ix_league_transactions_match', 'match_id'),
    )

    def to_ledger(self) -> LedgerTransaction:
        """Convert to the immutable transfer object used by the aggregator."""
        match_ref = None
        if self.user_match is not None and self.user_match.raw_score is not None:
            seat = self.user_match
            match_ref = MatchRef(
                match_id=seat.match_id,
                player_position=seat.player_position,
                raw_score=seat.raw_score,
                placement_min=seat.placement_min,
                placement_max=seat.placement_max
            )
        return LedgerTransaction(
            kind=self.type,
            user_id=self.user_id,
            league_id=self.league_id,
            delta=Decimal(self.delta),
            time=self.time,
            match_ref=match_ref,
            description=self.description
        )

    def __repr__(self):
        return f"<LeagueTransaction(type={self.type}, user_id='{self.user_id}', league_id={self.league_id}, delta={self.delta})>"
