from typing import Optional
from pydantic import BaseModel


class GameResult(BaseModel):
    """Outcome of a game as reported by the feed"""

    winning_team: Optional[str] = None  # None while the game is not final (or tied)
    completed: bool = False

    class Config:
        populate_by_name = True
