"""
Legacy leaderboard path: one pick document per user.

Week board: members + N reads. Season board: members + N x weeks reads.
Only used when the unified path is disabled, failing, or behind an open breaker.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from confidence_pool.models import ConfidencePick, GameResult, LeaderboardEntry, LegacyPickDocument, SubmitResult
from confidence_pool.repositories.confidence_repository import ConfidenceRepository
from confidence_pool.services import scoring
from confidence_pool.services.game_feed import GameResultFeed
from confidence_pool.services.membership import MembershipDirectory, is_participating

logger = logging.getLogger(__name__)


class LegacyLeaderboardService:
    def __init__(
        self,
        repository: ConfidenceRepository,
        membership: MembershipDirectory,
        feed: GameResultFeed,
        current_week: Callable[[], int],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repository = repository
        self.membership = membership
        self.feed = feed
        self.current_week = current_week
        self.clock = clock
        self.reads = 0

    async def _user_week_score(self, user_id: str, week_number: int, results: Mapping[str, GameResult]) -> int:
        legacy = await self.repository.get_legacy_picks(week_number, user_id)
        self.reads += 1
        if legacy is None:
            return 0
        return scoring.score_user_picks(legacy.picks, results)

    async def calculate_leaderboard(self, week_number: Optional[int] = None) -> list[LeaderboardEntry]:
        members = await self.membership.get_members() or {}
        user_ids = [user_id for user_id in members if is_participating(user_id, members)]
        logger.warning(f"⚠️ LEGACY: reading {len(user_ids)} user documents per week")

        weeks = [week_number] if week_number is not None else list(range(1, self.current_week() + 1))
        results_by_week = {week: await self.feed.get_game_results(week) for week in weeks}

        rows = []
        for user_id in user_ids:
            total = 0
            for week in weeks:
                total += await self._user_week_score(user_id, week, results_by_week[week])
            rows.append((user_id, members[user_id].display_name, total))
        return scoring.rank_entries(rows)

    async def save_user_picks(
        self,
        week_number: int,
        user_id: str,
        picks: Mapping[str, ConfidencePick],
        display_name: str,
    ) -> SubmitResult:
        """Writes the per-user document only"""
        doc = LegacyPickDocument(
            submission_time=self.clock(),
            picks={
                game_id: {
                    "winning_team_choice": pick.winning_team_choice,
                    "confidence_points": pick.confidence_points,
                }
                for game_id, pick in picks.items()
            },
        )
        await self.repository.save_legacy_picks(week_number, user_id, doc)
        logger.info(f"⚠️ LEGACY: picks saved for {display_name} ({user_id}), week {week_number}")
        return SubmitResult(success=True, writes_executed=1)
