"""
Picks controller - submit and read a user's confidence picks for a week
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, status
from pydantic import BaseModel, Field, field_validator

from confidence_pool.core.dependencies import Integration


router = APIRouter(prefix="/picks", tags=["picks"])


class PickIn(BaseModel):
    winning_team_choice: str = Field(..., min_length=1)
    confidence_points: int = Field(..., ge=1)


class PickSubmissionRequest(BaseModel):
    """All of a user's picks for one week, keyed by game id."""
    user_id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    picks: dict[str, PickIn] = Field(..., min_length=1)

    @field_validator("picks")
    @classmethod
    def confidence_points_are_unique(cls, picks: dict[str, PickIn]) -> dict[str, PickIn]:
        points = [pick.confidence_points for pick in picks.values()]
        if len(points) != len(set(points)):
            raise ValueError("Each confidence value can only be used once per week")
        return picks


class SubmitResponse(BaseModel):
    success: bool
    writes_executed: int
    used_fallback: bool
    load_time_ms: float


class PickResponse(BaseModel):
    game_id: str
    winning_team_choice: str
    confidence_points: int
    submitted_at: Optional[datetime] = None


@router.post("/week/{week_number}", response_model=SubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_picks(
    submission: PickSubmissionRequest,
    integration: Integration,
    week_number: int = Path(..., ge=1, le=18),
):
    """
    Save the user's picks for the week.

    A submission replaces the user's previous picks for that week.
    """
    result = await integration.save_user_picks(
        week_number,
        submission.user_id,
        {game_id: pick.model_dump() for game_id, pick in submission.picks.items()},
        submission.display_name,
    )

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Picks could not be saved, please retry: {result.error}"
        )

    return SubmitResponse(
        success=True,
        writes_executed=result.writes_executed,
        used_fallback=result.used_fallback,
        load_time_ms=result.load_time_ms,
    )


@router.get("/week/{week_number}/users/{user_id}", response_model=list[PickResponse])
async def get_user_picks(
    user_id: str,
    integration: Integration,
    week_number: int = Path(..., ge=1, le=18),
):
    """
    A user's picks for the week (empty when none were submitted).
    """
    picks = await integration.load_user_picks(week_number, user_id)
    return [
        PickResponse(
            game_id=game_id,
            winning_team_choice=pick.winning_team_choice,
            confidence_points=pick.confidence_points,
            submitted_at=pick.submitted_at,
        )
        for game_id, pick in sorted(picks.items(), key=lambda item: -item[1].confidence_points)
    ]
