"""
Database models for the Tournament Backend

All models should be imported here for Alembic to detect them.
"""
from tourney.models.tournament import Tournament, PrizeShare, TournamentStatus
from tourney.models.participant import Participant, Attempt
from tourney.models.prize import PrizeReceipt, PayoutEvent, PayoutStatus
from tourney.models.wallet import WalletBalance, WalletTransaction

__all__ = [
    # Tournament
    "Tournament",
    "PrizeShare",
    "TournamentStatus",
    # Ranking store
    "Participant",
    "Attempt",
    # Settlement
    "PrizeReceipt",
    "PayoutEvent",
    "PayoutStatus",
    # Wallet
    "WalletBalance",
    "WalletTransaction",
]
