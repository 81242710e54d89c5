"""
Ranking service for tournament leaderboards

Ranking order is best score descending, then earliest join, then insertion
order, so equal scores always rank the same way.
"""
from typing import Optional, List
from uuid import UUID
from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session

from tourney.core.exceptions import NotFound
from tourney.models.participant import Participant, Attempt
from tourney.models.prize import PrizeReceipt
from tourney.models.tournament import Tournament
from tourney.schemas.tournament import LeaderboardEntry, LeaderboardResponse

RANKING_ORDER = (
    Participant.best_score.desc(),
    Participant.joined_at.asc(),
    Participant.id.asc(),
)


class RankingService:
    """Service for leaderboard and ranking queries"""

    def __init__(self, max_limit: int = 100):
        self._max_limit = max_limit

    def top_participants(
        self, db: Session, tournament_id: UUID, limit: int, played_only: bool = False
    ) -> List[Participant]:
        """
        Best ``limit`` participants in ranking order.

        With ``played_only``, seats carried over by auto-renew that never
        submitted an attempt are left out.
        """
        if limit <= 0:
            return []
        query = select(Participant).where(Participant.tournament_id == tournament_id)
        if played_only:
            query = query.where(Participant.attempts > 0)
        return list(db.execute(
            query
            .order_by(*RANKING_ORDER)
            .limit(limit)
        ).scalars().all())

    def get_player_rank(self, db: Session, tournament_id: UUID, player_id: str) -> Optional[int]:
        """1-based rank of a player, or None if they have not played"""
        participant = db.execute(
            select(Participant).where(
                Participant.tournament_id == tournament_id,
                Participant.player_id == player_id,
            )
        ).scalar_one_or_none()
        if participant is None:
            return None

        # Count participants strictly ahead in ranking order
        ahead = db.execute(
            select(func.count(Participant.id)).where(
                Participant.tournament_id == tournament_id,
                or_(
                    Participant.best_score > participant.best_score,
                    and_(
                        Participant.best_score == participant.best_score,
                        Participant.joined_at < participant.joined_at,
                    ),
                    and_(
                        Participant.best_score == participant.best_score,
                        Participant.joined_at == participant.joined_at,
                        Participant.id < participant.id,
                    ),
                ),
            )
        ).scalar()
        return (ahead or 0) + 1

    def get_leaderboard(
        self,
        db: Session,
        tournament_id: UUID,
        limit: int = 50,
        player_id: Optional[str] = None,
    ) -> LeaderboardResponse:
        """Get tournament leaderboard"""
        tournament = db.get(Tournament, tournament_id)
        if tournament is None:
            raise NotFound("Tournament not found")

        limit = max(1, min(limit, self._max_limit))
        participants = self.top_participants(db, tournament_id, limit)
        total = db.execute(
            select(func.count(Participant.id)).where(Participant.tournament_id == tournament_id)
        ).scalar() or 0

        entries = [
            LeaderboardEntry(
                rank=idx + 1,
                player_id=p.player_id,
                display_name=p.display_name,
                best_score=p.best_score,
                attempts=p.attempts,
            )
            for idx, p in enumerate(participants)
        ]

        # Caller's own entry, even when outside the returned page
        player_entry = None
        if player_id:
            rank = self.get_player_rank(db, tournament_id, player_id)
            if rank is not None:
                participant = db.execute(
                    select(Participant).where(
                        Participant.tournament_id == tournament_id,
                        Participant.player_id == player_id,
                    )
                ).scalar_one()
                player_entry = LeaderboardEntry(
                    rank=rank,
                    player_id=participant.player_id,
                    display_name=participant.display_name,
                    best_score=participant.best_score,
                    attempts=participant.attempts,
                )

        return LeaderboardResponse(
            tournament_id=tournament.id,
            tournament_name=tournament.name,
            status=tournament.status,
            entries=entries,
            total_participants=total,
            player_entry=player_entry,
        )

    def list_attempts(self, db: Session, tournament_id: UUID, player_id: str) -> List[Attempt]:
        """Raw attempts of one player, oldest first"""
        return list(db.execute(
            select(Attempt)
            .where(Attempt.tournament_id == tournament_id, Attempt.player_id == player_id)
            .order_by(Attempt.id.asc())
        ).scalars().all())

    def list_prizes(self, db: Session, tournament_id: UUID) -> List[PrizeReceipt]:
        """Prize receipts of a tournament by place"""
        return list(db.execute(
            select(PrizeReceipt)
            .where(PrizeReceipt.tournament_id == tournament_id)
            .order_by(PrizeReceipt.place.asc())
        ).scalars().all())
