"""
Participation service: join-or-update attempt recording
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import exists, select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tourney.core.exceptions import (
    CapacityExceeded,
    NotFound,
    TournamentClosed,
    TransientError,
    ValidationError,
)
from tourney.models.participant import Participant, Attempt
from tourney.models.tournament import Tournament, TournamentStatus
from tourney.services.prize_distribution import net_entry_contribution
from tourney.services.tournament_registry import TournamentRegistry
from tourney.services.wallet_service import WalletService, WalletKind
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptResult:
    best_score: int
    is_new_best: bool
    attempts: int


def entry_fee_key(tournament_id: UUID, player_id: str) -> str:
    return f"entry:{tournament_id}:{player_id}"


class ParticipationService:
    """Records attempts and keeps each participant's best score"""

    # Retries after losing a race to create the same participant row
    MAX_RETRIES = 3

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: TournamentRegistry,
        wallet: WalletService,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._wallet = wallet
        self._clock = clock

    def record_attempt(
        self,
        tournament_id: UUID,
        player_id: str,
        display_name: str,
        score: int,
        auto_renew: bool = False,
    ) -> AttemptResult:
        """
        Record one attempt and return the participant's best score.

        The first attempt creates the participant (charging the entry fee and
        counting against the cap). Later attempts bump the attempt count and
        replace the best score only when strictly greater. Each change is a
        single conditional UPDATE, so concurrent attempts by the same player
        cannot lose updates.

        Raises NotFound, TournamentClosed, CapacityExceeded or
        InsufficientFunds.
        """
        if score < 0:
            raise ValidationError("Score must be non-negative")

        for retry in range(1, self.MAX_RETRIES + 1):
            with self._session_factory() as db:
                try:
                    result = self._apply_attempt(db, tournament_id, player_id, display_name, score, auto_renew)
                    db.commit()
                    return result
                except IntegrityError:
                    db.rollback()
                    logger.info(
                        f"Concurrent join of {player_id} to {tournament_id}, retrying ({retry}/{self.MAX_RETRIES})"
                    )
                except Exception:
                    db.rollback()
                    raise

        raise TransientError(f"Could not record attempt for {player_id} in {tournament_id}")

    def get_participant(self, db: Session, tournament_id: UUID, player_id: str) -> Optional[Participant]:
        """Get a player's entry in a tournament"""
        return db.execute(
            select(Participant).where(
                Participant.tournament_id == tournament_id,
                Participant.player_id == player_id,
            )
        ).scalar_one_or_none()

    def _apply_attempt(
        self,
        db: Session,
        tournament_id: UUID,
        player_id: str,
        display_name: str,
        score: int,
        auto_renew: bool,
    ) -> AttemptResult:
        now = self._clock()
        # Row lock orders this attempt against a settlement of the same tournament
        tournament = self._registry.get_for_update(db, tournament_id)
        if tournament is None:
            raise NotFound("Tournament not found")
        if tournament.status == TournamentStatus.FINISHED or now >= tournament.end_time:
            raise TournamentClosed("Tournament has ended")
        if now < tournament.start_time:
            raise TournamentClosed("Tournament has not started yet")
        if tournament.status == TournamentStatus.UPCOMING:
            self._registry.activate(db, tournament.id, now)

        is_participant = (
            Participant.tournament_id == tournament_id,
            Participant.player_id == player_id,
        )
        still_open = self._still_open(tournament_id, now)
        improved = db.execute(
            update(Participant)
            .where(*is_participant, still_open, Participant.best_score < score)
            .values(best_score=score)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        counted = db.execute(
            update(Participant)
            .where(*is_participant, still_open)
            .values(
                attempts=Participant.attempts + 1,
                display_name=display_name,
                last_attempt_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        if counted:
            is_new_best = improved
        elif self.get_participant(db, tournament_id, player_id) is not None:
            # Settled after the read above; the leaderboard is frozen
            raise TournamentClosed("Tournament has ended")
        else:
            self._join(db, tournament, player_id, display_name, score, auto_renew, now)
            is_new_best = True

        db.add(Attempt(
            tournament_id=tournament_id,
            player_id=player_id,
            score=score,
            is_new_best=is_new_best,
            submitted_at=now,
        ))
        db.flush()

        best_score, attempts = db.execute(
            select(Participant.best_score, Participant.attempts).where(*is_participant)
        ).one()
        return AttemptResult(best_score=best_score, is_new_best=is_new_best, attempts=attempts)

    @staticmethod
    def _still_open(tournament_id: UUID, now: datetime):
        """Condition that the tournament still accepts attempts at ``now``"""
        return exists().where(
            Tournament.id == tournament_id,
            Tournament.status.in_(TournamentStatus.OPEN),
            Tournament.end_time > now,
        )

    def _join(
        self,
        db: Session,
        tournament: Tournament,
        player_id: str,
        display_name: str,
        score: int,
        auto_renew: bool,
        now: datetime,
    ) -> Participant:
        """Create the participant row, taking a seat and charging the entry fee"""
        fee = tournament.entry_fee or Decimal("0")
        contribution = net_entry_contribution(fee, tournament.platform_fee_percent) if fee > 0 else Decimal("0")

        seated = db.execute(
            update(Tournament)
            .where(
                Tournament.id == tournament.id,
                Tournament.status.in_(TournamentStatus.OPEN),
                or_(
                    Tournament.max_participants.is_(None),
                    Tournament.current_participants < Tournament.max_participants,
                ),
            )
            .values(
                current_participants=Tournament.current_participants + 1,
                prize_pool=Tournament.prize_pool + contribution,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        if not seated:
            status = db.execute(select(Tournament.status).where(Tournament.id == tournament.id)).scalar()
            if status == TournamentStatus.FINISHED:
                raise TournamentClosed("Tournament has ended")
            raise CapacityExceeded("Tournament is full")

        if fee > 0:
            self._wallet.debit(db, player_id, fee, entry_fee_key(tournament.id, player_id), WalletKind.ENTRY_FEE)

        participant = Participant(
            tournament_id=tournament.id,
            player_id=player_id,
            display_name=display_name,
            best_score=score,
            attempts=1,
            paid_entry=fee > 0,
            auto_renew=auto_renew,
            joined_at=now,
            last_attempt_at=now,
        )
        db.add(participant)
        db.flush()

        logger.info(f"Player {player_id} joined tournament {tournament.id}")
        return participant
