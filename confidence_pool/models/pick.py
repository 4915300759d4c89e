from datetime import datetime
from typing import Any, Mapping, Optional
from pydantic import BaseModel, Field, field_validator


META_KEY = "meta"


class ConfidencePick(BaseModel):
    """A user's pick for one game: the team and the points wagered on it"""

    winning_team_choice: str
    confidence_points: int = Field(..., ge=1)
    submitted_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class StoredPick(BaseModel):
    """
    A pick as found in a stored document. Scoring skips entries without a
    team or points, but whatever is there must have the right type.
    """

    winning_team_choice: Optional[str] = None
    confidence_points: Optional[int] = Field(None, ge=0)
    submitted_at: Optional[datetime] = None


def validate_game_picks(user_picks: Mapping[str, Any]) -> dict[str, Any]:
    """Normalizes one user's game picks; the `meta` entry is kept as is"""
    validated: dict[str, Any] = {}
    for game_id, pick in user_picks.items():
        if game_id == META_KEY:
            validated[game_id] = pick
        else:
            validated[game_id] = StoredPick.model_validate(pick).model_dump(exclude_unset=True)
    return validated


class PickMeta(BaseModel):
    """The `meta` entry stored next to a user's game picks"""

    display_name: str
    user_id: str
    submission_time: Optional[datetime] = None

    class Config:
        populate_by_name = True


class LegacyPickDocument(BaseModel):
    """Older per-user, per-week pick document kept alive by the dual write"""

    submission_time: Optional[datetime] = None
    picks: dict[str, dict] = {}  # game_id -> {winning_team_choice, confidence_points}

    @field_validator("picks")
    @classmethod
    def check_picks(cls, picks: dict[str, dict]) -> dict[str, dict]:
        return {
            game_id: StoredPick.model_validate(pick).model_dump(exclude_unset=True)
            for game_id, pick in picks.items()
        }

    class Config:
        populate_by_name = True
