"""
Participant and attempt models (the ranking store)
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, Index, Uuid
from sqlalchemy.orm import relationship
from tourney.database import Base
from tourney.utils.time_utils import utc_now


class Participant(Base):
    """A player's standing in one tournament"""
    __tablename__ = "tournament_participants"

    # Integer key keeps insertion order as the last tie-break
    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Uuid, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True)
    player_id = Column(String(255), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)

    # Performance
    best_score = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)

    # Entry
    paid_entry = Column(Boolean, nullable=False, default=False)
    auto_renew = Column(Boolean, nullable=False, default=False)

    # Timestamps
    joined_at = Column(DateTime, nullable=False, default=utc_now)
    last_attempt_at = Column(DateTime, nullable=True)

    # Unique constraint - one entry per player per tournament
    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="unique_tournament_participant"),
        Index("ix_tournament_participants_ranking", "tournament_id", "best_score", "joined_at"),
    )

    tournament = relationship("Tournament", back_populates="participants")


class Attempt(Base):
    """Append-only log of every submitted score"""
    __tablename__ = "tournament_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Uuid, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(String(255), nullable=False)
    score = Column(Integer, nullable=False)
    is_new_best = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_tournament_attempts_player", "tournament_id", "player_id"),
    )
