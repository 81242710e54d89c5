"""
Settlement engine: finalizes expired tournaments and pays their prizes

Every tournament is settled in its own transaction. Prize receipts, wallet
credits and payout events are written first and the transaction is then
gated on the conditional status flip in TournamentRegistry.mark_finished:
when two runners settle the same tournament only one flip succeeds, and the
loser rolls back everything it wrote. Receipt ids are derived from
(tournament, place), so a retried pass reuses the same wallet idempotency
keys and the receipt uniqueness constraints reject a second payout.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import UUID, uuid5

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tourney.core.exceptions import ConcurrencyLost, InsufficientFunds, NotFound, TransientError
from tourney.models.participant import Participant
from tourney.models.prize import PrizeReceipt, PayoutEvent, PayoutStatus
from tourney.models.tournament import Tournament, TournamentStatus
from tourney.schemas.settlement import SettlementOutcome, SettlementStatus
from tourney.services.participation_service import entry_fee_key
from tourney.services.prize_distribution import compute_awards, net_entry_contribution
from tourney.services.ranking_service import RankingService, RANKING_ORDER
from tourney.services.tournament_registry import TournamentRegistry
from tourney.services.wallet_service import WalletService, WalletKind
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

RECEIPT_NAMESPACE = UUID("6f1c2d9e-4b7a-5c3e-9d8f-2a1b0c9e8d7f")


def receipt_id_for(tournament_id: UUID, place: int) -> UUID:
    """Stable prize receipt id for a tournament place"""
    return uuid5(RECEIPT_NAMESPACE, f"{tournament_id}:{place}")


def prize_credit_key(receipt_id: UUID) -> str:
    return f"prize:{receipt_id}"


class SettlementEngine:
    """Finds expired tournaments and settles each one exactly once"""

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: TournamentRegistry,
        ranking: RankingService,
        wallet: WalletService,
        clock: Callable[[], datetime] = utc_now,
        enqueue_transfers: bool = False,
        max_workers: int = 1,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._ranking = ranking
        self._wallet = wallet
        self._clock = clock
        self._enqueue_transfers = enqueue_transfers
        self._max_workers = max(1, max_workers)

    def run_settlement_pass(self, now: Optional[datetime] = None) -> List[SettlementOutcome]:
        """
        Settle every open tournament whose window elapsed before ``now``.

        Failures are contained per tournament and reported as 'failed'
        outcomes; they stay open and are retried on the next pass. Errors
        while listing candidates (storage unavailable) propagate.
        """
        now = now or self._clock()
        with self._session_factory() as db:
            candidates = [t.id for t in self._registry.list_expired_unsettled(db, now)]

        if not candidates:
            logger.debug("No tournaments to settle")
            return []

        logger.info(f"Found {len(candidates)} tournaments to settle")
        if self._max_workers > 1 and len(candidates) > 1:
            workers = min(self._max_workers, len(candidates))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="settlement") as pool:
                outcomes = list(pool.map(lambda tid: self.settle_tournament(tid, now), candidates))
        else:
            outcomes = [self.settle_tournament(tid, now) for tid in candidates]

        settled = sum(1 for o in outcomes if o.status == SettlementStatus.SETTLED)
        failed = sum(1 for o in outcomes if o.status == SettlementStatus.FAILED)
        logger.info(
            f"Settlement pass done: {settled} settled, {failed} failed, "
            f"{len(outcomes) - settled - failed} no-op"
        )
        return outcomes

    def settle_tournament(self, tournament_id: UUID, now: Optional[datetime] = None) -> SettlementOutcome:
        """Settle one tournament in its own transaction"""
        now = now or self._clock()
        with self._session_factory() as db:
            try:
                outcome = self._settle(db, tournament_id, now)
                if outcome.status == SettlementStatus.SETTLED:
                    db.commit()
                else:
                    db.rollback()
                return outcome
            except ConcurrencyLost as e:
                db.rollback()
                logger.info(f"Tournament {tournament_id} settled by another runner: {e}")
                return SettlementOutcome(tournament_id, SettlementStatus.NOOP, detail=str(e))
            except IntegrityError as e:
                db.rollback()
                if self._is_finished(db, tournament_id):
                    logger.info(f"Tournament {tournament_id} settled by another runner (duplicate receipt)")
                    return SettlementOutcome(tournament_id, SettlementStatus.NOOP, detail="already settled")
                logger.error(f"Integrity error settling tournament {tournament_id}: {e}")
                return SettlementOutcome(tournament_id, SettlementStatus.FAILED, detail=str(e.orig))
            except (TransientError, SQLAlchemyError) as e:
                db.rollback()
                logger.warning(f"Settlement of tournament {tournament_id} failed, will retry: {e}")
                return SettlementOutcome(tournament_id, SettlementStatus.FAILED, detail=str(e))
            except Exception as e:
                db.rollback()
                logger.error(f"Unexpected error settling tournament {tournament_id}", exc_info=True)
                return SettlementOutcome(tournament_id, SettlementStatus.FAILED, detail=str(e))

    def _settle(self, db: Session, tournament_id: UUID, now: datetime) -> SettlementOutcome:
        tournament = self._registry.get_for_update(db, tournament_id)
        if tournament is None:
            raise NotFound(f"Tournament {tournament_id} not found")
        if tournament.status == TournamentStatus.FINISHED:
            raise ConcurrencyLost("already finished")
        if tournament.end_time >= now:
            return SettlementOutcome(tournament_id, SettlementStatus.NOOP, detail="not expired")

        logger.info(f"Settling tournament {tournament.name} ({tournament.id})")

        distribution = tournament.prize_distribution
        depth = max(distribution) if distribution else 0
        ranked = self._ranking.top_participants(db, tournament.id, depth, played_only=True)
        awards = compute_awards(tournament.prize_pool, distribution, ranked)

        total_paid = Decimal("0")
        for award in awards:
            receipt = PrizeReceipt(
                id=receipt_id_for(tournament.id, award.place),
                tournament_id=tournament.id,
                player_id=award.player_id,
                display_name=award.display_name,
                place=award.place,
                amount=award.amount,
                paid=True,
                paid_at=now,
                created_at=now,
            )
            db.add(receipt)
            db.flush()

            self._wallet.credit(db, award.player_id, award.amount, prize_credit_key(receipt.id), WalletKind.PRIZE)
            if self._enqueue_transfers and award.amount > 0:
                db.add(PayoutEvent(
                    receipt_id=receipt.id,
                    player_id=award.player_id,
                    amount=award.amount,
                    status=PayoutStatus.PENDING,
                    next_attempt_at=now,
                    created_at=now,
                    updated_at=now,
                ))

            total_paid += award.amount
            logger.info(f"  Prize for place {award.place}: {award.display_name} - {award.amount}")

        if not ranked:
            logger.info("  No participants")

        if not self._registry.mark_finished(db, tournament.id, now):
            raise ConcurrencyLost("status flip lost")

        if tournament.auto_renew:
            self._renew(db, tournament, now)

        db.flush()
        logger.info(f"Tournament {tournament.id} finished, paid {total_paid} in {len(awards)} prizes")
        return SettlementOutcome(
            tournament_id=tournament.id,
            status=SettlementStatus.SETTLED,
            receipts=len(awards),
            total_paid=total_paid,
        )

    def _renew(self, db: Session, tournament: Tournament, now: datetime) -> Tournament:
        """Create the successor and carry over participants who opted in"""
        successor = self._registry.create_successor(db, tournament, now)

        returning = db.execute(
            select(Participant)
            .where(Participant.tournament_id == tournament.id, Participant.auto_renew.is_(True))
            .order_by(*RANKING_ORDER)
        ).scalars().all()

        fee = successor.entry_fee or Decimal("0")
        for participant in returning:
            if successor.max_participants is not None and successor.current_participants >= successor.max_participants:
                logger.info(f"  Successor {successor.id} is full, stopping carry-over")
                break
            if fee > 0:
                try:
                    self._wallet.debit(
                        db, participant.player_id, fee,
                        entry_fee_key(successor.id, participant.player_id), WalletKind.ENTRY_FEE,
                    )
                except InsufficientFunds:
                    logger.info(f"  {participant.player_id} cannot pay the renewal fee, not carried over")
                    continue
                successor.prize_pool = successor.prize_pool + net_entry_contribution(fee, successor.platform_fee_percent)

            db.add(Participant(
                tournament_id=successor.id,
                player_id=participant.player_id,
                display_name=participant.display_name,
                best_score=0,
                attempts=0,
                paid_entry=fee > 0,
                auto_renew=True,
                joined_at=now,
            ))
            successor.current_participants += 1

        db.flush()
        return successor

    def _is_finished(self, db: Session, tournament_id: UUID) -> bool:
        status = db.execute(select(Tournament.status).where(Tournament.id == tournament_id)).scalar()
        return status == TournamentStatus.FINISHED
