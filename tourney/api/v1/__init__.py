"""
API v1 routes aggregation
"""
from fastapi import APIRouter
from tourney.api.v1 import tournaments, settlement

api_router = APIRouter()

# Tournaments, attempts and leaderboards
api_router.include_router(tournaments.router, tags=["tournaments"])

# Settlement
api_router.include_router(settlement.router, tags=["settlement"])
