from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, field_validator

from .game import GameResult
from .leaderboard import Leaderboards
from .pick import META_KEY, validate_game_picks


class CacheMetadata(BaseModel):
    """Freshness metadata stored on every unified week document"""

    last_updated: Optional[datetime] = None
    games_complete: int = 0
    invalidate_after: Optional[datetime] = None
    # Picks were saved to the legacy layout only; rebuild from the legacy documents
    needs_migration: bool = False


class WeekStats(BaseModel):
    total_users: int = 0
    total_picks: int = 0
    average_score: float = 0.0
    average_confidence: float = 0.0
    pick_distribution: dict[str, int] = {}  # confidence points -> number of picks


class WeekDocument(BaseModel):
    """
    Unified document: every user's picks for one week plus precomputed boards.

    picks: {user_id: {game_id: pick, "meta": {display_name, user_id}}}
    """

    week_number: int
    picks: dict[str, dict[str, Any]] = {}
    leaderboards: Leaderboards = Leaderboards()
    cache: CacheMetadata = CacheMetadata()
    game_results: dict[str, GameResult] = {}
    stats: WeekStats = WeekStats()

    @field_validator("picks")
    @classmethod
    def check_picks(cls, picks: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        return {user_id: validate_game_picks(user_picks) for user_id, user_picks in picks.items()}

    class Config:
        populate_by_name = True


class SeasonSummary(BaseModel):
    """Season aggregate: per-week scores and their per-user sums"""

    user_totals: dict[str, int] = {}
    weekly_totals: dict[str, dict[str, int]] = {}  # week (as str) -> {user_id: score}
    last_updated: Optional[datetime] = None

    class Config:
        populate_by_name = True
