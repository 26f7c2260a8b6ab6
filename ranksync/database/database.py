from typing import Optional
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ranksync.config import Config
from ranksync.database.models import Base, UserRecord
from ranksync.utils.logger import setup_logger


def to_async_url(database_url: str) -> str:
    """Plain sqlite URLs are served through the aiosqlite driver."""
    if database_url.startswith('sqlite:///'):
        return 'sqlite+aiosqlite:///' + database_url[len('sqlite:///'):]
    return database_url


class Database:
    """Owns the engine for the users table and the writes the tests and tools need."""

    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = to_async_url(database_url or Config.DATABASE_URL)
        self.engine = None
        self._sessions: Optional[async_sessionmaker] = None

    async def initialize(self):
        self.logger.info(f"Opening leaderboard store at {self.database_url.split('://', 1)[0]}://...")
        self.engine = create_async_engine(self.database_url, echo=Config.DEBUG)
        self._sessions = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info("Leaderboard store ready")

    @property
    def session_factory(self) -> async_sessionmaker:
        """Session factory handed to read services"""
        if self._sessions is None:
            raise RuntimeError("Database.initialize() must be awaited first")
        return self._sessions

    @asynccontextmanager
    async def transaction(self):
        """Write scope: commits when the block exits cleanly, rolls back otherwise"""
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._sessions = None
            self.logger.info("Leaderboard store closed")

    @staticmethod
    async def _find_user(session: AsyncSession, telegram_id) -> Optional[UserRecord]:
        return await session.scalar(select(UserRecord).where(UserRecord.telegram_id == str(telegram_id)))

    async def get_user(self, telegram_id: str) -> Optional[UserRecord]:
        async with self.session_factory() as session:
            return await self._find_user(session, telegram_id)

    async def upsert_user(self, telegram_id: str, username: str, points: int = 0, total_gifts: int = 0) -> UserRecord:
        """Create a user or overwrite their scores"""
        async with self.transaction() as session:
            user = await self._find_user(session, telegram_id)
            if user is None:
                user = UserRecord(telegram_id=str(telegram_id))
                session.add(user)
            user.username = username
            user.points = max(points, 0)
            user.total_gifts = max(total_gifts, 0)
        return user

    async def adjust_user_score(self, telegram_id: str, points_delta: int = 0, gifts_delta: int = 0) -> Optional[UserRecord]:
        """Apply a committed score change (e.g. a gift purchase), clamping at zero"""
        async with self.transaction() as session:
            user = await self._find_user(session, telegram_id)
            if user is None:
                self.logger.warning(f"Cannot adjust score for unknown user {telegram_id}")
                return None
            user.points = max(user.points + points_delta, 0)
            user.total_gifts = max(user.total_gifts + gifts_delta, 0)
        self.logger.debug(f"Adjusted {telegram_id}: points {points_delta:+d}, gifts {gifts_delta:+d}")
        return user
