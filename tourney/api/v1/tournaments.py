"""
Tournament API endpoints
"""
import logging
from typing import Optional, List
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session

from tourney.core.config import get_settings
from tourney.core.container import Services
from tourney.core.dependencies import get_services
from tourney.core.exceptions import (
    CapacityExceeded,
    InsufficientFunds,
    NotFound,
    TournamentClosed,
    TransientError,
    ValidationError,
)
from tourney.core.rate_limit import limiter
from tourney.database import get_db
from tourney.models.tournament import TournamentStatus
from tourney.schemas.tournament import (
    TournamentCreate,
    TournamentResponse,
    TournamentListResponse,
    AttemptSubmit,
    AttemptResponse,
    LeaderboardResponse,
    PrizeReceiptResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tournaments", tags=["tournaments"])


def _attempt_rate_limit() -> str:
    return get_settings().ATTEMPT_RATE_LIMIT


@router.post("", response_model=TournamentResponse, status_code=status.HTTP_201_CREATED)
async def create_tournament(
    tournament_data: TournamentCreate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Create a tournament"""
    try:
        tournament = services.registry.create(db, tournament_data)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    return TournamentResponse.model_validate(tournament)


@router.get("", response_model=TournamentListResponse)
async def list_tournaments(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """List tournaments, newest first"""
    if status_filter and status_filter not in TournamentStatus.ALL:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown status '{status_filter}'"
        )
    tournaments, total = services.registry.list_tournaments(db, status_filter, limit, offset)
    return TournamentListResponse(
        tournaments=[TournamentResponse.model_validate(t) for t in tournaments],
        total_count=total
    )


@router.get("/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(
    tournament_id: UUID,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Get tournament details"""
    tournament = services.registry.get(db, tournament_id)
    if not tournament:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tournament not found"
        )
    return TournamentResponse.model_validate(tournament)


@router.post("/{tournament_id}/attempts", response_model=AttemptResponse)
@limiter.limit(_attempt_rate_limit)
async def submit_attempt(
    request: Request,
    tournament_id: UUID,
    attempt: AttemptSubmit,
    services: Services = Depends(get_services)
):
    """Record one attempt; the first one joins the tournament"""
    try:
        result = services.participation.record_attempt(
            tournament_id,
            attempt.player_id,
            attempt.display_name,
            attempt.score,
            auto_renew=attempt.auto_renew,
        )
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (TournamentClosed, CapacityExceeded) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InsufficientFunds as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except TransientError as e:
        logger.warning(f"Attempt for {attempt.player_id} in {tournament_id} not recorded: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return AttemptResponse(
        success=True,
        best_score=result.best_score,
        is_new_best=result.is_new_best,
        attempts=result.attempts
    )


@router.get("/{tournament_id}/leaderboard", response_model=LeaderboardResponse)
async def get_tournament_leaderboard(
    tournament_id: UUID,
    limit: int = Query(50, ge=1),
    player_id: Optional[str] = Query(None, description="Include this player's rank"),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Get tournament leaderboard"""
    try:
        return services.ranking.get_leaderboard(db, tournament_id, limit, player_id)
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{tournament_id}/prizes", response_model=List[PrizeReceiptResponse])
async def get_tournament_prizes(
    tournament_id: UUID,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Prizes paid for a settled tournament"""
    if services.registry.get(db, tournament_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tournament not found"
        )
    return [PrizeReceiptResponse.model_validate(r) for r in services.ranking.list_prizes(db, tournament_id)]
