from .pick import ConfidencePick, StoredPick, PickMeta, LegacyPickDocument, validate_game_picks
from .leaderboard import LeaderboardEntry, Leaderboards
from .game import GameResult
from .member import PoolMember, Participation
from .week import WeekDocument, SeasonSummary, CacheMetadata, WeekStats, META_KEY
from .results import DisplayResult, SubmitResult

__all__ = [
    "ConfidencePick",
    "StoredPick",
    "validate_game_picks",
    "PickMeta",
    "LegacyPickDocument",
    "LeaderboardEntry",
    "Leaderboards",
    "GameResult",
    "PoolMember",
    "Participation",
    "WeekDocument",
    "SeasonSummary",
    "CacheMetadata",
    "WeekStats",
    "META_KEY",
    "DisplayResult",
    "SubmitResult",
]
