"""
Game result feeds

GameResultFeed.get_game_results(week) -> {game_id: GameResult}

- EspnGameResultFeed: public ESPN scoreboard (regular season)
- StaticGameResultFeed: results held in memory (tests, ESPN disabled)

A game without a winner is not an error: scoring simply awards nothing for it yet.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from confidence_pool.core.errors import GameFeedError, GameFeedFormatError
from confidence_pool.models import GameResult

logger = logging.getLogger(__name__)

REGULAR_SEASON = 2
FINAL_STATUSES = {"STATUS_FINAL", "STATUS_FINAL_OVERTIME"}


class GameResultFeed(ABC):
    @abstractmethod
    async def get_game_results(self, week_number: int) -> dict[str, GameResult]:
        ...


class StaticGameResultFeed(GameResultFeed):
    def __init__(self, results: Optional[dict[int, dict[str, GameResult]]] = None):
        self._results: dict[int, dict[str, GameResult]] = results or {}

    def set_results(self, week_number: int, results: dict[str, GameResult]) -> None:
        self._results[week_number] = results

    async def get_game_results(self, week_number: int) -> dict[str, GameResult]:
        return dict(self._results.get(week_number, {}))


class EspnGameResultFeed(GameResultFeed):
    def __init__(
        self,
        scoreboard_url: str,
        season: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.scoreboard_url = scoreboard_url
        self.season = season
        self.timeout = timeout
        self._client = client

    async def _fetch(self, params: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self.scoreboard_url, params=params)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.scoreboard_url, params=params)

    async def get_game_results(self, week_number: int) -> dict[str, GameResult]:
        params = {"dates": self.season, "seasontype": REGULAR_SEASON, "week": week_number}
        try:
            response = await self._fetch(params)
        except httpx.TimeoutException as e:
            raise GameFeedError(f"ESPN scoreboard timed out for week {week_number}") from e
        except httpx.RequestError as e:
            raise GameFeedError(f"ESPN scoreboard request failed: {e}") from e

        if response.status_code != 200:
            raise GameFeedError(f"ESPN scoreboard returned {response.status_code} for week {week_number}")

        try:
            payload = response.json()
        except ValueError as e:
            raise GameFeedFormatError(f"ESPN scoreboard is not JSON: {e}") from e

        results = parse_scoreboard(payload)
        complete = sum(1 for r in results.values() if r.completed)
        logger.info(f"🏈 ESPN week {week_number}: {len(results)} games, {complete} final")
        return results


def parse_scoreboard(payload: Any) -> dict[str, GameResult]:
    """Turns an ESPN scoreboard payload into {event_id: GameResult}"""
    if not isinstance(payload, dict) or not isinstance(payload.get("events", []), list):
        raise GameFeedFormatError("ESPN scoreboard payload has no events list")

    results: dict[str, GameResult] = {}
    for event in payload.get("events", []):
        try:
            game_id = str(event["id"])
            competition = event["competitions"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise GameFeedFormatError(f"Malformed ESPN event: {e}") from e
        results[game_id] = _parse_competition(competition)
    return results


def _parse_competition(competition: dict) -> GameResult:
    status = (competition.get("status") or {}).get("type") or {}
    completed = bool(status.get("completed")) or status.get("name") in FINAL_STATUSES
    if not completed:
        return GameResult(winning_team=None, completed=False)

    competitors = competition.get("competitors") or []
    for competitor in competitors:
        if competitor.get("winner") is True:
            return GameResult(winning_team=_team_id(competitor), completed=True)

    # No winner flag: decide on score, a tie has no winner
    scored = []
    for competitor in competitors:
        try:
            scored.append((int(competitor.get("score", 0)), _team_id(competitor)))
        except (TypeError, ValueError):
            continue
    if len(scored) == 2 and scored[0][0] != scored[1][0]:
        return GameResult(winning_team=max(scored)[1], completed=True)
    return GameResult(winning_team=None, completed=True)


def _team_id(competitor: dict) -> Optional[str]:
    team = competitor.get("team") or {}
    return team.get("abbreviation")
