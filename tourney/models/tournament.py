"""
Tournament system models
"""
from uuid import uuid4
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint, Index, Uuid,
)
from sqlalchemy.orm import relationship
from tourney.database import Base
from tourney.utils.time_utils import utc_now

# Money columns: 20 digits, 8 after the point
MONEY = Numeric(20, 8)


class TournamentStatus:
    UPCOMING = "upcoming"
    ACTIVE = "active"
    FINISHED = "finished"

    OPEN = (UPCOMING, ACTIVE)
    ALL = (UPCOMING, ACTIVE, FINISHED)


class Tournament(Base):
    """Tournament definition"""
    __tablename__ = "tournaments"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Tournament details
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Money
    entry_fee = Column(MONEY, nullable=False, default=0)
    prize_pool = Column(MONEY, nullable=False, default=0)
    guaranteed_prize_pool = Column(MONEY, nullable=False, default=0)  # Pool at creation, seeds renewals
    platform_fee_percent = Column(Numeric(5, 2), nullable=False, default=10)

    # Lifecycle: 'upcoming' -> 'active' -> 'finished'
    status = Column(String(20), nullable=False, default=TournamentStatus.UPCOMING, index=True)

    # Schedule
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False, index=True)
    finished_at = Column(DateTime, nullable=True)

    # Capacity
    max_participants = Column(Integer, nullable=True)
    current_participants = Column(Integer, nullable=False, default=0)

    # Auto-renew: a successor is created when this tournament is settled
    auto_renew = Column(Boolean, nullable=False, default=False)
    renewed_from_id = Column(Uuid, ForeignKey("tournaments.id"), unique=True, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    prize_shares = relationship(
        "PrizeShare",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="PrizeShare.rank",
        lazy="selectin",
    )
    participants = relationship("Participant", back_populates="tournament")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_tournament_window"),
        CheckConstraint("entry_fee >= 0", name="ck_tournament_entry_fee"),
        CheckConstraint("prize_pool >= 0", name="ck_tournament_prize_pool"),
        Index("ix_tournaments_status_end_time", "status", "end_time"),
    )

    @property
    def prize_distribution(self) -> dict:
        """Rank -> percent mapping"""
        return {share.rank: share.percent for share in self.prize_shares}

    @property
    def is_open(self) -> bool:
        return self.status in TournamentStatus.OPEN


class PrizeShare(Base):
    """One row of a tournament's prize distribution table"""
    __tablename__ = "tournament_prize_shares"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Uuid, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True)
    rank = Column(Integer, nullable=False)
    percent = Column(Numeric(5, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "rank", name="unique_prize_share_rank"),
        CheckConstraint("rank >= 1", name="ck_prize_share_rank"),
        CheckConstraint("percent >= 0 AND percent <= 100", name="ck_prize_share_percent"),
    )

    tournament = relationship("Tournament", back_populates="prize_shares")
