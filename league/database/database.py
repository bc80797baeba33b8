from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select
from contextlib import asynccontextmanager

from league.config import Config
from league.data_models.ledger import LedgerTransaction
from league.database.models import (
    Base, User, Ruleset, League, UserLeague, Match, LeagueTransaction
)
from league.utils.exceptions import NotFoundError, ValidationError
from league.utils.logger import setup_logger


@dataclass(frozen=True)
class LeagueMemberRecord:
    """A league member with everything the aggregator and ranker need."""
    user_id: str
    display_name: str
    soft_penalty: bool
    transactions: List[LedgerTransaction]


class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing ledger database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Ledger database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Ledger database connection closed")

    # Users
    async def create_user(self, user_id: str, username: str, display_name: Optional[str] = None) -> User:
        async with self.transaction() as session:
            user = User(id=user_id, username=username, display_name=display_name)
            session.add(user)
        return user

    # Rulesets and leagues
    async def create_ruleset(
        self,
        name: str,
        start_pts: int,
        return_pts: int,
        uma: Sequence,
        chombo_delta,
        num_players: Optional[int] = None
    ) -> Ruleset:
        """Create a ruleset. The number of players defaults to the length of the uma."""
        if num_players is not None and num_players != len(uma):
            raise ValidationError(f"Ruleset for {num_players} players needs {num_players} uma values, got {len(uma)}")

        async with self.transaction() as session:
            ruleset = Ruleset(
                name=name,
                num_players=num_players or len(uma),
                start_pts=start_pts,
                return_pts=return_pts,
                chombo_delta=Decimal(chombo_delta)
            )
            ruleset.uma_values = uma
            session.add(ruleset)
        return ruleset

    async def create_league(
        self,
        name: str,
        ruleset_id: int,
        matches_required: int = 0,
        starting_points=0,
        soft_penalty_cutoff: int = 0,
        description: Optional[str] = None
    ) -> League:
        async with self.transaction() as session:
            if await session.get(Ruleset, ruleset_id) is None:
                raise NotFoundError('ruleset', ruleset_id)
            league = League(
                name=name,
                description=description,
                default_ruleset_id=ruleset_id,
                matches_required=matches_required,
                starting_points=Decimal(starting_points),
                soft_penalty_cutoff=soft_penalty_cutoff
            )
            session.add(league)
        self.logger.info(f"Created league {league.id} '{name}' (matches required: {matches_required})")
        return league

    async def get_league(self, league_id: int, session: Optional[AsyncSession] = None) -> League:
        """Get a league by id. Raises NotFoundError if it does not exist."""
        if session is not None:
            league = await session.get(League, league_id)
        else:
            async with self.get_session() as own_session:
                league = await own_session.get(League, league_id)
        if league is None:
            raise NotFoundError('league', league_id)
        return league

    async def get_matches_required(self, league_id: int) -> int:
        """The per-league minimum number of matches to be ranked."""
        league = await self.get_league(league_id)
        return league.matches_required

    async def get_membership(self, session: AsyncSession, league_id: int, user_id: str) -> UserLeague:
        membership = await session.get(UserLeague, (league_id, user_id))
        if membership is None:
            raise NotFoundError('membership', f"{league_id}/{user_id}")
        return membership

    # Ledger reads
    async def get_league_members(
        self,
        league_id: int,
        user_ids: Optional[Iterable[str]] = None
    ) -> List[LeagueMemberRecord]:
        """
        Batched read of league members and their ledger transactions.

        Args:
            league_id: League to read
            user_ids: Restrict to these members; None reads the whole league

        Returns:
            One record per member, including members without any transaction
        """
        async with self.get_session() as session:
            member_query = (
                select(UserLeague)
                .options(selectinload(UserLeague.user))
                .where(UserLeague.league_id == league_id)
            )
            txn_query = (
                select(LeagueTransaction)
                .options(selectinload(LeagueTransaction.user_match))
                .where(LeagueTransaction.league_id == league_id)
            )
            if user_ids is not None:
                user_ids = list(user_ids)
                if not user_ids:
                    return []
                member_query = member_query.where(UserLeague.user_id.in_(user_ids))
                txn_query = txn_query.where(LeagueTransaction.user_id.in_(user_ids))

            members = (await session.execute(member_query)).scalars().all()
            txns = (await session.execute(txn_query)).scalars().all()

            by_user: Dict[str, List[LedgerTransaction]] = {}
            for txn in txns:
                by_user.setdefault(txn.user_id, []).append(txn.to_ledger())

            return [
                LeagueMemberRecord(
                    user_id=member.user_id,
                    display_name=member.user.name,
                    soft_penalty=member.soft_penalty,
                    transactions=by_user.get(member.user_id, [])
                )
                for member in members
            ]

    async def get_score_history(self, league_id: int, user_id: str) -> List[LedgerTransaction]:
        """A member's ledger, newest first."""
        async with self.get_session() as session:
            await self.get_membership(session, league_id, user_id)
            result = await session.execute(
                select(LeagueTransaction)
                .options(selectinload(LeagueTransaction.user_match))
                .where(
                    LeagueTransaction.league_id == league_id,
                    LeagueTransaction.user_id == user_id
                )
                .order_by(LeagueTransaction.time.desc(), LeagueTransaction.id.desc())
            )
            return [txn.to_ledger() for txn in result.scalars().all()]

    # Ledger writes
    @staticmethod
    def add_transactions(session: AsyncSession, transactions: Iterable[LedgerTransaction]) -> int:
        """Stage ledger entries on an open session. Returns how many were added."""
        count = 0
        for txn in transactions:
            session.add(LeagueTransaction(
                type=txn.kind,
                user_id=txn.user_id,
                league_id=txn.league_id,
                delta=txn.delta,
                time=txn.time,
                description=txn.description,
                match_id=txn.match_ref.match_id if txn.match_ref else None,
                player_position=txn.match_ref.player_position if txn.match_ref else None
            ))
            count += 1
        return count

    # Matches
    async def get_match_for_update(self, session: AsyncSession, match_id: int) -> Match:
        """Load a match with its seats, ruleset and league on an open session."""
        result = await session.execute(
            select(Match)
            .options(
                selectinload(Match.players),
                selectinload(Match.ruleset),
                selectinload(Match.league)
            )
            .where(Match.id == match_id)
        )
        match = result.scalar_one_or_none()
        if match is None:
            raise NotFoundError('match', match_id)
        return match

    async def get_match(self, match_id: int) -> Match:
        async with self.get_session() as session:
            return await self.get_match_for_update(session, match_id)

