"""
Tournament schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID
from pydantic import BaseModel, Field, field_validator

from tourney.utils.time_utils import as_naive_utc


class TournamentBase(BaseModel):
    """Base tournament schema"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    entry_fee: Decimal = Field(default=Decimal("0"), ge=0)
    prize_pool: Decimal = Field(default=Decimal("0"), ge=0)
    platform_fee_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    start_time: datetime
    end_time: datetime
    max_participants: Optional[int] = Field(default=None, ge=1)
    auto_renew: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class TournamentCreate(TournamentBase):
    """Schema for creating tournaments (admin)"""
    status: Optional[str] = None  # derived from start_time when omitted
    prize_distribution: Optional[Dict[int, Decimal]] = None


class TournamentResponse(BaseModel):
    """Tournament response schema"""
    id: UUID
    name: str
    description: Optional[str] = None
    status: str
    entry_fee: Decimal
    prize_pool: Decimal
    platform_fee_percent: Decimal
    start_time: datetime
    end_time: datetime
    finished_at: Optional[datetime] = None
    max_participants: Optional[int] = None
    current_participants: int
    prize_distribution: Dict[int, Decimal]
    auto_renew: bool
    renewed_from_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TournamentListResponse(BaseModel):
    """List of tournaments"""
    tournaments: List[TournamentResponse]
    total_count: int


class AttemptSubmit(BaseModel):
    """Submit a score to a tournament"""
    player_id: str = Field(..., min_length=1, max_length=255)
    display_name: str = Field(..., min_length=1, max_length=255)
    score: int = Field(..., ge=0)
    auto_renew: bool = False


class AttemptResponse(BaseModel):
    """Response after submitting a tournament score"""
    success: bool = True
    best_score: int
    is_new_best: bool
    attempts: int


class LeaderboardEntry(BaseModel):
    """Single entry in tournament leaderboard"""
    rank: int
    player_id: str
    display_name: str
    best_score: int
    attempts: int


class LeaderboardResponse(BaseModel):
    """Tournament leaderboard response"""
    tournament_id: UUID
    tournament_name: str
    status: str
    entries: List[LeaderboardEntry]
    total_participants: int
    player_entry: Optional[LeaderboardEntry] = None


class PrizeReceiptResponse(BaseModel):
    """Prize paid for a finishing place"""
    id: UUID
    tournament_id: UUID
    player_id: str
    display_name: str
    place: int
    amount: Decimal
    paid: bool
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True
