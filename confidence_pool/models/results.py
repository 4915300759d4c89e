from typing import Any, Optional
from pydantic import BaseModel

from confidence_pool.core.errors import ErrorKind

from .leaderboard import LeaderboardEntry


class DisplayResult(BaseModel):
    """What get_display_data resolves to; never raised, always returned"""

    success: bool
    data: list[LeaderboardEntry] = []
    metadata: dict[str, Any] = {}
    load_time_ms: float = 0.0
    from_cache: bool = False
    fallback_required: bool = False
    reads: int = 0  # document store reads spent serving this call
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class SubmitResult(BaseModel):
    """Outcome of a dual-write pick submission"""

    success: bool
    writes_executed: int = 0
    used_fallback: bool = False
    partial_write: bool = False  # unified doc written but legacy doc was not
    load_time_ms: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
