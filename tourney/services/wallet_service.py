"""
Wallet ledger

Balance movements run inside the caller's transaction so that a rolled back
settlement also rolls back its credits. Every movement carries an
idempotency key; replaying a key returns the recorded transaction without
touching the balance.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from tourney.core.exceptions import InsufficientFunds, ValidationError
from tourney.models.wallet import WalletBalance, WalletTransaction
from tourney.services.prize_distribution import to_money
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class WalletKind:
    PRIZE = "prize"
    ENTRY_FEE = "entry_fee"
    TRANSFER = "transfer"
    REFUND = "refund"


class WalletService:
    """Database-backed wallet ledger"""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def get_balance(self, db: Session, player_id: str) -> Decimal:
        balance = db.execute(
            select(WalletBalance.balance).where(WalletBalance.player_id == player_id)
        ).scalar()
        return to_money(balance if balance is not None else 0)

    def get_transaction(self, db: Session, idempotency_key: str) -> Optional[WalletTransaction]:
        return db.execute(
            select(WalletTransaction).where(WalletTransaction.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def credit(
        self,
        db: Session,
        player_id: str,
        amount: Decimal,
        idempotency_key: str,
        kind: str = WalletKind.PRIZE,
    ) -> WalletTransaction:
        """Add ``amount`` to the player's balance"""
        amount = to_money(amount)
        if amount < 0:
            raise ValidationError("Credit amount must be non-negative")

        existing = self.get_transaction(db, idempotency_key)
        if existing is not None:
            logger.info(f"Wallet credit {idempotency_key} already applied, skipping")
            return existing

        self._add_to_balance(db, player_id, amount)
        return self._record(db, player_id, amount, kind, idempotency_key)

    def debit(
        self,
        db: Session,
        player_id: str,
        amount: Decimal,
        idempotency_key: str,
        kind: str = WalletKind.ENTRY_FEE,
    ) -> WalletTransaction:
        """
        Subtract ``amount`` from the player's balance.

        Raises InsufficientFunds without changing anything when the balance
        cannot cover it.
        """
        amount = to_money(amount)
        if amount < 0:
            raise ValidationError("Debit amount must be non-negative")

        existing = self.get_transaction(db, idempotency_key)
        if existing is not None:
            logger.info(f"Wallet debit {idempotency_key} already applied, skipping")
            return existing

        # Conditional decrement; no row or a short balance matches nothing
        result = db.execute(
            update(WalletBalance)
            .where(
                WalletBalance.player_id == player_id,
                WalletBalance.balance >= amount,
            )
            .values(balance=WalletBalance.balance - amount, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientFunds(f"Balance of {player_id} cannot cover {amount}")

        return self._record(db, player_id, -amount, kind, idempotency_key)

    def _add_to_balance(self, db: Session, player_id: str, amount: Decimal) -> None:
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(WalletBalance).values(
                player_id=player_id, balance=amount, updated_at=self._clock()
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[WalletBalance.player_id],
                set_={
                    "balance": WalletBalance.balance + stmt.excluded.balance,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            db.execute(stmt)
            return

        wallet = db.get(WalletBalance, player_id, with_for_update=True)
        if wallet is None:
            db.add(WalletBalance(player_id=player_id, balance=amount, updated_at=self._clock()))
        else:
            wallet.balance = wallet.balance + amount
        db.flush()

    def _record(
        self,
        db: Session,
        player_id: str,
        amount: Decimal,
        kind: str,
        idempotency_key: str,
    ) -> WalletTransaction:
        transaction = WalletTransaction(
            player_id=player_id,
            amount=amount,
            kind=kind,
            idempotency_key=idempotency_key,
            created_at=self._clock(),
        )
        db.add(transaction)
        db.flush()
        return transaction
