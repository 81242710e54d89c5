"""
Settlement schemas
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel


class SettlementStatus:
    SETTLED = "settled"
    NOOP = "noop"
    FAILED = "failed"


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of settling one tournament"""
    tournament_id: UUID
    status: str
    receipts: int = 0
    total_paid: Decimal = Decimal("0")
    detail: Optional[str] = None


class SettlementOutcomeResponse(BaseModel):
    tournament_id: UUID
    status: str
    receipts: int
    total_paid: Decimal
    detail: Optional[str] = None


class SettlementPassResponse(BaseModel):
    """Response after a manually triggered settlement pass"""
    outcomes: List[SettlementOutcomeResponse]
    settled: int
    noop: int
    failed: int
