"""
Leaderboard controller - weekly and season standings

Both endpoints go through the integration layer, so they keep answering
(possibly with empty standings) when the unified documents are unavailable.
"""

from typing import Optional

from fastapi import APIRouter, Path
from pydantic import BaseModel

from confidence_pool.core.dependencies import Integration


router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


class StandingResponse(BaseModel):
    """One leaderboard row."""
    uid: str
    display_name: str
    total_score: int
    rank: int


class LeaderboardResponse(BaseModel):
    """Standings plus the message to show when there are none."""
    week_number: Optional[int] = None
    standings: list[StandingResponse]
    message: Optional[str] = None
    load_time_ms: float


@router.get("/week/{week_number}", response_model=LeaderboardResponse)
async def get_week_leaderboard(
    integration: Integration,
    week_number: int = Path(..., ge=1, le=18),
):
    """
    Leaderboard for one week (scores from that week only).
    """
    view = await integration.display_leaderboard(week_number)
    return LeaderboardResponse(week_number=week_number, **view)


@router.get("/season", response_model=LeaderboardResponse)
async def get_season_leaderboard(integration: Integration):
    """
    Season leaderboard: totals across every recorded week.
    """
    view = await integration.display_leaderboard(None)
    return LeaderboardResponse(**view)
