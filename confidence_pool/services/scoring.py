"""
Scoring for the confidence pool.

Scoring rules:
- A correct pick earns the confidence points wagered on it
- A wrong pick earns nothing
- Games without a winner yet (in progress, not started, tie) earn nothing

Leaderboards use competition ranking: tied scores share a rank and the next
score resumes at its 1-based position ([50, 50, 40] -> [1, 1, 3]).
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Iterator, Mapping, Optional
from zoneinfo import ZoneInfo

from confidence_pool.models import (
    GameResult,
    LeaderboardEntry,
    SeasonSummary,
    WeekStats,
    META_KEY,
)

NFL_REGULAR_SEASON_WEEKS = 18


def iter_game_picks(user_picks: Mapping[str, Any]) -> Iterator[tuple[str, dict]]:
    """Yields (game_id, pick) pairs, skipping the `meta` entry"""
    for game_id, pick in user_picks.items():
        if game_id == META_KEY or not isinstance(pick, Mapping):
            continue
        yield game_id, pick


def display_name_for(user_picks: Mapping[str, Any]) -> str:
    meta = user_picks.get(META_KEY) or {}
    return meta.get("display_name") or "Unknown"


def calculate_pick_points(pick: Mapping[str, Any], result: Optional[GameResult]) -> int:
    """Points earned by a single pick (0 unless the chosen team won)"""
    if result is None or result.winning_team is None:
        return 0

    team = pick.get("winning_team_choice")
    points = pick.get("confidence_points")
    if not team or not points:
        return 0

    if team == result.winning_team:
        return int(points)
    return 0


def score_user_picks(user_picks: Mapping[str, Any], game_results: Mapping[str, GameResult]) -> int:
    return sum(
        calculate_pick_points(pick, game_results.get(game_id))
        for game_id, pick in iter_game_picks(user_picks)
    )


def weekly_scores(
    picks: Mapping[str, Mapping[str, Any]],
    game_results: Mapping[str, GameResult],
) -> dict[str, int]:
    return {user_id: score_user_picks(user_picks, game_results) for user_id, user_picks in picks.items()}


def rank_entries(rows: list[tuple[str, str, int]]) -> list[LeaderboardEntry]:
    """
    Sorts (user_id, display_name, score) rows and assigns competition ranks.

    Ordering among equal scores is by user_id so the result never depends on
    the iteration order of the input mapping.
    """
    ordered = sorted(rows, key=lambda row: (-row[2], row[0]))

    entries: list[LeaderboardEntry] = []
    for index, (user_id, display_name, score) in enumerate(ordered):
        rank = index + 1
        if index > 0 and score == entries[index - 1].score:
            rank = entries[index - 1].rank
        entries.append(LeaderboardEntry(user_id=user_id, display_name=display_name, score=score, rank=rank))
    return entries


def build_weekly_leaderboard(
    picks: Mapping[str, Mapping[str, Any]],
    game_results: Mapping[str, GameResult],
) -> list[LeaderboardEntry]:
    scores = weekly_scores(picks, game_results)
    return rank_entries([
        (user_id, display_name_for(user_picks), scores[user_id])
        for user_id, user_picks in picks.items()
    ])


def rebuild_user_totals(weekly_totals: Mapping[str, Mapping[str, int]]) -> dict[str, int]:
    """Season totals, always recomputed in full from the per-week scores"""
    totals: dict[str, int] = {}
    for scores in weekly_totals.values():
        for user_id, score in scores.items():
            totals[user_id] = totals.get(user_id, 0) + int(score)
    return totals


def apply_week_to_season(
    summary: SeasonSummary,
    week_number: int,
    scores: Mapping[str, int],
    updated_at: datetime,
) -> SeasonSummary:
    weekly_totals = dict(summary.weekly_totals)
    weekly_totals[str(week_number)] = dict(scores)
    return SeasonSummary(
        weekly_totals=weekly_totals,
        user_totals=rebuild_user_totals(weekly_totals),
        last_updated=updated_at,
    )


def build_season_leaderboard(
    summary: SeasonSummary,
    display_names: Optional[Mapping[str, str]] = None,
) -> list[LeaderboardEntry]:
    display_names = display_names or {}
    return rank_entries([
        (user_id, display_names.get(user_id) or f"User {user_id}", total)
        for user_id, total in summary.user_totals.items()
    ])


def calculate_week_stats(
    picks: Mapping[str, Mapping[str, Any]],
    weekly_leaderboard: Optional[list[LeaderboardEntry]] = None,
) -> WeekStats:
    total_picks = 0
    total_confidence = 0
    distribution: dict[str, int] = {}

    for user_picks in picks.values():
        for _, pick in iter_game_picks(user_picks):
            confidence = pick.get("confidence_points")
            if not confidence:
                continue
            total_picks += 1
            total_confidence += int(confidence)
            key = str(int(confidence))
            distribution[key] = distribution.get(key, 0) + 1

    average_score = 0.0
    if weekly_leaderboard:
        average_score = sum(e.score for e in weekly_leaderboard) / len(weekly_leaderboard)

    return WeekStats(
        total_users=len(picks),
        total_picks=total_picks,
        average_score=round(average_score, 2),
        average_confidence=round(total_confidence / total_picks, 2) if total_picks else 0.0,
        pick_distribution=distribution,
    )


def count_complete_games(game_results: Mapping[str, GameResult]) -> int:
    return sum(1 for r in game_results.values() if r.completed or r.winning_team is not None)


def end_of_nfl_week(now: datetime, tz: ZoneInfo) -> datetime:
    """Last instant of the coming Sunday in the pool's timezone"""
    local = now.astimezone(tz)
    sunday = local.date() + timedelta(days=6 - local.weekday())
    return datetime.combine(sunday, time.max, tzinfo=tz)


def current_nfl_week(now: datetime, season_start: date) -> int:
    days = (now.date() - season_start).days
    return max(1, min(NFL_REGULAR_SEASON_WEEKS, days // 7 + 1))
