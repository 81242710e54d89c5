"""
Tournament registry: creation, lookup and status transitions
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from tourney.core.exceptions import ValidationError
from tourney.models.tournament import Tournament, PrizeShare, TournamentStatus
from tourney.schemas.tournament import TournamentCreate
from tourney.services.prize_distribution import normalize_distribution, to_money
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class TournamentRegistry:
    """Owns tournament rows and the transitions between their statuses"""

    def __init__(
        self,
        default_distribution: Dict[int, Decimal],
        default_platform_fee_percent: Decimal = Decimal("10"),
        clock: Callable[[], datetime] = utc_now,
    ):
        self._default_distribution = normalize_distribution(default_distribution)
        self._default_platform_fee_percent = default_platform_fee_percent
        self._clock = clock

    def create(self, db: Session, tournament_data: TournamentCreate) -> Tournament:
        """Validate and create a new tournament"""
        now = self._clock()
        if tournament_data.end_time <= tournament_data.start_time:
            raise ValidationError("end_time must be after start_time")
        if tournament_data.entry_fee < 0 or tournament_data.prize_pool < 0:
            raise ValidationError("entry_fee and prize_pool must be non-negative")
        if tournament_data.max_participants is not None and tournament_data.max_participants < 1:
            raise ValidationError("max_participants must be at least 1")

        platform_fee = tournament_data.platform_fee_percent
        if platform_fee is None:
            platform_fee = self._default_platform_fee_percent
        if not Decimal("0") <= platform_fee <= Decimal("100"):
            raise ValidationError("platform_fee_percent must be between 0 and 100")

        if tournament_data.prize_distribution is None:
            distribution = self._default_distribution
        else:
            distribution = normalize_distribution(tournament_data.prize_distribution)

        status = tournament_data.status
        if status is None:
            status = TournamentStatus.ACTIVE if tournament_data.start_time <= now else TournamentStatus.UPCOMING
        elif status not in TournamentStatus.OPEN:
            raise ValidationError(f"A tournament cannot be created with status '{status}'")

        pool = to_money(tournament_data.prize_pool)
        tournament = Tournament(
            name=tournament_data.name,
            description=tournament_data.description,
            entry_fee=to_money(tournament_data.entry_fee),
            prize_pool=pool,
            guaranteed_prize_pool=pool,
            platform_fee_percent=platform_fee,
            status=status,
            start_time=tournament_data.start_time,
            end_time=tournament_data.end_time,
            max_participants=tournament_data.max_participants,
            current_participants=0,
            auto_renew=tournament_data.auto_renew,
            created_at=now,
            updated_at=now,
        )
        tournament.prize_shares = [
            PrizeShare(rank=rank, percent=percent) for rank, percent in distribution.items()
        ]
        db.add(tournament)
        db.commit()
        db.refresh(tournament)

        logger.info(f"Created tournament {tournament.id} '{tournament.name}' ({tournament.status})")
        return tournament

    def get(self, db: Session, tournament_id: UUID) -> Optional[Tournament]:
        """Get tournament by id"""
        return db.get(Tournament, tournament_id)

    def get_for_update(self, db: Session, tournament_id: UUID) -> Optional[Tournament]:
        """Get tournament by id, locking its row for the current transaction"""
        return db.execute(
            select(Tournament).where(Tournament.id == tournament_id).with_for_update()
        ).scalar_one_or_none()

    def list_tournaments(
        self,
        db: Session,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Tournament], int]:
        """List tournaments with optional status filter, newest first"""
        query = select(Tournament)
        count_query = select(func.count(Tournament.id))
        if status:
            query = query.where(Tournament.status == status)
            count_query = count_query.where(Tournament.status == status)

        total = db.execute(count_query).scalar() or 0
        tournaments = db.execute(
            query.order_by(Tournament.start_time.desc()).offset(offset).limit(limit)
        ).scalars().all()
        return list(tournaments), total

    def list_expired_unsettled(self, db: Session, now: datetime) -> List[Tournament]:
        """Open tournaments whose window has elapsed, earliest expiry first"""
        return list(db.execute(
            select(Tournament)
            .where(
                Tournament.status.in_(TournamentStatus.OPEN),
                Tournament.end_time < now,
            )
            .order_by(Tournament.end_time.asc())
        ).scalars().all())

    def activate_started(self, db: Session, now: datetime) -> int:
        """Move upcoming tournaments whose window has opened to active"""
        result = db.execute(
            update(Tournament)
            .where(
                Tournament.status == TournamentStatus.UPCOMING,
                Tournament.start_time <= now,
                Tournament.end_time > now,
            )
            .values(status=TournamentStatus.ACTIVE, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def activate(self, db: Session, tournament_id: UUID, now: datetime) -> bool:
        """Conditional upcoming -> active for a single tournament"""
        result = db.execute(
            update(Tournament)
            .where(
                Tournament.id == tournament_id,
                Tournament.status == TournamentStatus.UPCOMING,
            )
            .values(status=TournamentStatus.ACTIVE, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_finished(self, db: Session, tournament_id: UUID, now: datetime) -> bool:
        """
        Flip an open tournament to finished.

        Succeeds only while the row is still upcoming or active, and returns
        whether this call made the transition. Runs inside the caller's
        transaction; the caller commits or rolls back depending on the result.
        """
        result = db.execute(
            update(Tournament)
            .where(
                Tournament.id == tournament_id,
                Tournament.status.in_(TournamentStatus.OPEN),
            )
            .values(status=TournamentStatus.FINISHED, finished_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def create_successor(self, db: Session, tournament: Tournament, now: datetime) -> Tournament:
        """
        Create the next edition of an auto-renewing tournament.

        The successor keeps the same parameters and duration and starts where
        the predecessor ended, rolled forward whole periods until it ends in
        the future. Does not commit.
        """
        duration = tournament.end_time - tournament.start_time
        start = tournament.end_time
        while start + duration <= now:
            start += duration
        end = start + duration

        successor = Tournament(
            name=tournament.name,
            description=tournament.description,
            entry_fee=tournament.entry_fee,
            prize_pool=tournament.guaranteed_prize_pool,
            guaranteed_prize_pool=tournament.guaranteed_prize_pool,
            platform_fee_percent=tournament.platform_fee_percent,
            status=TournamentStatus.ACTIVE if start <= now else TournamentStatus.UPCOMING,
            start_time=start,
            end_time=end,
            max_participants=tournament.max_participants,
            current_participants=0,
            auto_renew=True,
            renewed_from_id=tournament.id,
            created_at=now,
            updated_at=now,
        )
        successor.prize_shares = [
            PrizeShare(rank=share.rank, percent=share.percent) for share in tournament.prize_shares
        ]
        db.add(successor)
        db.flush()

        logger.info(f"Renewed tournament {tournament.id} as {successor.id} ({start} - {end})")
        return successor
