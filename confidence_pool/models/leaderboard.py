from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    """One row of a weekly or season leaderboard"""

    user_id: str
    display_name: str
    score: int  # weekly score or season total, depending on the board
    rank: int

    class Config:
        populate_by_name = True


class Leaderboards(BaseModel):
    weekly: list[LeaderboardEntry] = []
    season: list[LeaderboardEntry] = []
