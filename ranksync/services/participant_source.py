"""
Participant sources for authoritative leaderboard fetches.

Defines the fetch contract the orchestrator depends on and the SQLAlchemy
implementation backed by the users table.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy import select, func, or_, and_

from ranksync.data_models.participant import Participant
from ranksync.data_models.position import RemotePosition
from ranksync.database.models import UserRecord
from ranksync.services.base import BaseService

logger = logging.getLogger(__name__)


class ParticipantSource(ABC):
    """Where the orchestrator reads authoritative rankings from."""

    @abstractmethod
    async def fetch_top_window(self, n: int) -> List[Participant]:
        """Return up to ``n`` participants, ideally already in window order."""

    async def fetch_exact_position(self, identity: str) -> Optional[RemotePosition]:
        """Direct rank lookup; None when unsupported or the participant is unknown."""
        return None


class SqlParticipantSource(BaseService, ParticipantSource):
    """Reads the leaderboard straight from the users table."""

    def __init__(self, session_factory, max_retries: int = 3):
        super().__init__(session_factory)
        self.max_retries = max_retries

    async def fetch_top_window(self, n: int) -> List[Participant]:
        if not isinstance(n, int) or n < 1:
            raise ValueError("n must be a positive integer")

        async def _query():
            async with self.get_session() as session:
                result = await session.execute(
                    select(UserRecord)
                    .order_by(
                        UserRecord.points.desc(),
                        UserRecord.total_gifts.desc(),
                        UserRecord.telegram_id.asc(),
                    )
                    .limit(n)
                )
                return [Participant.from_record(user.as_record()) for user in result.scalars()]

        window = await self.execute_with_retry(_query, self.max_retries)
        logger.debug(f"Fetched window of {len(window)} participants")
        return window

    async def fetch_exact_position(self, identity: str) -> Optional[RemotePosition]:
        async def _query():
            async with self.get_session() as session:
                user = await session.scalar(
                    select(UserRecord).where(UserRecord.telegram_id == str(identity))
                )
                if user is None:
                    return None

                # Strictly better rows under (points, gifts, identity)
                better = await session.scalar(
                    select(func.count(UserRecord.id)).where(
                        or_(
                            UserRecord.points > user.points,
                            and_(UserRecord.points == user.points, UserRecord.total_gifts > user.total_gifts),
                            and_(
                                UserRecord.points == user.points,
                                UserRecord.total_gifts == user.total_gifts,
                                UserRecord.telegram_id < user.telegram_id,
                            ),
                        )
                    )
                )
                return RemotePosition(rank=(better or 0) + 1, participant=Participant.from_record(user.as_record()))

        return await self.execute_with_retry(_query, self.max_retries)
