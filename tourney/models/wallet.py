"""
Wallet ledger models
"""
from uuid import uuid4
from sqlalchemy import Column, String, DateTime, Uuid
from tourney.database import Base
from tourney.models.tournament import MONEY
from tourney.utils.time_utils import utc_now


class WalletBalance(Base):
    """Current balance per player"""
    __tablename__ = "wallet_balances"

    player_id = Column(String(255), primary_key=True)
    balance = Column(MONEY, nullable=False, default=0)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class WalletTransaction(Base):
    """Signed balance movement; the idempotency key makes replays no-ops"""
    __tablename__ = "wallet_transactions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    player_id = Column(String(255), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    kind = Column(String(20), nullable=False)  # 'prize', 'entry_fee', 'transfer', 'refund'
    idempotency_key = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime, default=utc_now)
