"""
Prize receipts and the payout outbox
"""
from uuid import uuid4
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey, UniqueConstraint, Index, Uuid
from tourney.database import Base
from tourney.models.tournament import MONEY
from tourney.utils.time_utils import utc_now


class PrizeReceipt(Base):
    """Prize paid to a winner when a tournament is settled"""
    __tablename__ = "tournament_prizes"

    id = Column(Uuid, primary_key=True)
    tournament_id = Column(Uuid, ForeignKey("tournaments.id"), nullable=False, index=True)
    player_id = Column(String(255), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    place = Column(Integer, nullable=False)
    amount = Column(MONEY, nullable=False)

    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    # A place is paid once per tournament; duplicate settlement fails here
    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", "place", name="unique_prize_receipt"),
        UniqueConstraint("tournament_id", "place", name="unique_prize_place"),
    )


class PayoutStatus:
    PENDING = "pending"
    SENT = "sent"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PayoutEvent(Base):
    """Transfer of a prize to the payment network, drained by the payout worker"""
    __tablename__ = "payout_events"

    id = Column(Uuid, primary_key=True, default=uuid4)
    receipt_id = Column(Uuid, ForeignKey("tournament_prizes.id"), unique=True, nullable=False)
    player_id = Column(String(255), nullable=False)
    amount = Column(MONEY, nullable=False)

    # 'pending' -> 'sent' -> 'confirmed', or 'failed'
    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    tx_reference = Column(String(255), nullable=True)
    last_error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_payout_events_status_next", "status", "next_attempt_at"),
    )
