"""
Settlement API endpoints
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from tourney.core.container import Services
from tourney.core.dependencies import get_services
from tourney.schemas.settlement import (
    SettlementOutcomeResponse,
    SettlementPassResponse,
    SettlementStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlement", tags=["settlement"])


@router.post("/run", response_model=SettlementPassResponse)
async def run_settlement(
    services: Services = Depends(get_services)
):
    """Run one settlement pass now"""
    try:
        outcomes = services.settlement.run_settlement_pass()
    except SQLAlchemyError as e:
        logger.error(f"Manual settlement pass failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable, settlement not run"
        )

    return SettlementPassResponse(
        outcomes=[
            SettlementOutcomeResponse(
                tournament_id=o.tournament_id,
                status=o.status,
                receipts=o.receipts,
                total_paid=o.total_paid,
                detail=o.detail,
            )
            for o in outcomes
        ],
        settled=sum(1 for o in outcomes if o.status == SettlementStatus.SETTLED),
        noop=sum(1 for o in outcomes if o.status == SettlementStatus.NOOP),
        failed=sum(1 for o in outcomes if o.status == SettlementStatus.FAILED),
    )
