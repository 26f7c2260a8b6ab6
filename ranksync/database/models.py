from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

class UserRecord(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    telegram_id = Column(String(64), unique=True, nullable=False, index=True)
    username = Column(String(100), nullable=True)

    # Competition scores
    points = Column(Integer, nullable=False, default=0)
    total_gifts = Column(Integer, nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('points >= 0', name='ck_users_points_non_negative'),
        CheckConstraint('total_gifts >= 0', name='ck_users_gifts_non_negative'),
        # Serves the window query's ORDER BY
        Index('ix_users_ranking', 'points', 'total_gifts', 'telegram_id'),
    )

    def as_record(self) -> dict:
        return {
            'telegram_id': self.telegram_id,
            'username': self.username,
            'points': self.points,
            'total_gifts': self.total_gifts,
        }

    def __repr__(self):
        return f"<UserRecord(telegram_id='{self.telegram_id}', username='{self.username}', points={self.points}, gifts={self.total_gifts})>"
