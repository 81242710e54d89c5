"""
Payout worker: forwards settled prizes to the payment network

Settlement writes one PayoutEvent per prize in the same transaction as the
receipt. This worker drains pending events one transaction at a time: the
player's wallet is debited, the transfer is sent with the receipt id as
idempotency key, and the event is marked sent. A crash between sending and
committing leaves the event pending; the resend reuses the key, so the
network does not pay twice.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict
from uuid import UUID

from sqlalchemy import select, or_
from sqlalchemy.orm import sessionmaker

from tourney.core.exceptions import InsufficientFunds, PaymentRejected, TransientError
from tourney.models.prize import PayoutEvent, PayoutStatus
from tourney.services.payment_gateway import PaymentGateway, TransferStatus
from tourney.services.wallet_service import WalletService, WalletKind
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def transfer_key(receipt_id: UUID) -> str:
    return f"transfer:{receipt_id}"


def refund_key(receipt_id: UUID) -> str:
    return f"refund:{receipt_id}"


class PayoutWorker:
    """Single consumer loop for payout events"""

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        wallet: WalletService,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = 5,
        retry_base_seconds: int = 60,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._wallet = wallet
        self._clock = clock
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds

    def process_pending(self, limit: int = 50) -> Dict[str, int]:
        """Send due pending payouts; returns counts per outcome"""
        now = self._clock()
        with self._session_factory() as db:
            event_ids = db.execute(
                select(PayoutEvent.id)
                .where(
                    PayoutEvent.status == PayoutStatus.PENDING,
                    or_(PayoutEvent.next_attempt_at.is_(None), PayoutEvent.next_attempt_at <= now),
                )
                .order_by(PayoutEvent.created_at.asc())
                .limit(limit)
            ).scalars().all()

        counts = {"sent": 0, "retry": 0, "failed": 0, "skipped": 0}
        for event_id in event_ids:
            counts[self._process_event(event_id, now)] += 1

        if event_ids:
            logger.info(f"Payout batch: {counts}")
        return counts

    def reconcile_sent(self, limit: int = 50) -> Dict[str, int]:
        """Poll the network for sent transfers; refund the ones that failed"""
        now = self._clock()
        counts = {"confirmed": 0, "failed": 0, "pending": 0}
        with self._session_factory() as db:
            events = db.execute(
                select(PayoutEvent)
                .where(PayoutEvent.status == PayoutStatus.SENT)
                .order_by(PayoutEvent.updated_at.asc())
                .limit(limit)
            ).scalars().all()

            for event in events:
                try:
                    status = self._gateway.check_status(event.tx_reference)
                except TransientError as e:
                    logger.warning(f"Could not check transfer {event.tx_reference}: {e}")
                    counts["pending"] += 1
                    continue

                if status == TransferStatus.CONFIRMED:
                    event.status = PayoutStatus.CONFIRMED
                    event.updated_at = now
                    counts["confirmed"] += 1
                elif status == TransferStatus.FAILED:
                    self._wallet.credit(db, event.player_id, event.amount, refund_key(event.receipt_id), WalletKind.REFUND)
                    event.status = PayoutStatus.FAILED
                    event.last_error = f"Transfer {event.tx_reference} failed on the network"
                    event.updated_at = now
                    counts["failed"] += 1
                    logger.warning(f"Transfer {event.tx_reference} failed, refunded {event.amount} to {event.player_id}")
                else:
                    counts["pending"] += 1

            db.commit()
        return counts

    def _process_event(self, event_id: UUID, now: datetime) -> str:
        with self._session_factory() as db:
            event = db.execute(
                select(PayoutEvent)
                .where(PayoutEvent.id == event_id, PayoutEvent.status == PayoutStatus.PENDING)
                .with_for_update(skip_locked=True)
            ).scalar_one_or_none()
            if event is None:
                return "skipped"

            try:
                self._wallet.debit(db, event.player_id, event.amount, transfer_key(event.receipt_id), WalletKind.TRANSFER)
            except InsufficientFunds as e:
                db.rollback()
                return self._mark_failed(event_id, str(e), now)

            try:
                available = self._gateway.get_balance()
                if available < event.amount:
                    raise TransientError(f"Platform balance {available} cannot cover {event.amount}")
                result = self._gateway.send_funds(event.player_id, event.amount, str(event.receipt_id))
            except TransientError as e:
                db.rollback()
                return self._schedule_retry(event_id, str(e), now)
            except PaymentRejected as e:
                db.rollback()
                return self._mark_failed(event_id, str(e), now)

            event.status = PayoutStatus.SENT
            event.tx_reference = result.tx_reference
            event.attempts = event.attempts + 1
            event.last_error = None
            event.updated_at = now
            db.commit()

            logger.info(f"Sent prize {event.amount} to {event.player_id}: {result.tx_reference}")
            return "sent"

    def _schedule_retry(self, event_id: UUID, error: str, now: datetime) -> str:
        with self._session_factory() as db:
            event = db.get(PayoutEvent, event_id)
            event.attempts = event.attempts + 1
            event.last_error = error
            event.updated_at = now
            if event.attempts >= self._max_attempts:
                event.status = PayoutStatus.FAILED
                outcome = "failed"
                logger.error(f"Payout {event_id} failed after {event.attempts} attempts: {error}")
            else:
                delay = self._retry_base_seconds * 2 ** (event.attempts - 1)
                event.next_attempt_at = now + timedelta(seconds=delay)
                outcome = "retry"
                logger.warning(f"Payout {event_id} will retry in {delay}s: {error}")
            db.commit()
            return outcome

    def _mark_failed(self, event_id: UUID, error: str, now: datetime) -> str:
        with self._session_factory() as db:
            event = db.get(PayoutEvent, event_id)
            event.status = PayoutStatus.FAILED
            event.attempts = event.attempts + 1
            event.last_error = error
            event.updated_at = now
            db.commit()
        logger.error(f"Payout {event_id} rejected: {error}")
        return "failed"
