"""
Fixtures for integration tests
"""

import pytest
from httpx import ASGITransport, AsyncClient

from confidence_pool.main import create_app
from confidence_pool.services.scoring import build_weekly_leaderboard, calculate_week_stats


@pytest.fixture
async def client(integration):
    """
    HTTP client for testing API endpoints.

    The app gets the in-memory integration from the root conftest, so no
    MongoDB connection is opened.
    """
    app = create_app(integration)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def seeded_week(store, paths, clock, members_doc, week_picks, week_results):
    """Fresh unified document for week 2 plus the members document"""
    store.docs[paths.members()] = members_doc
    weekly = build_weekly_leaderboard(week_picks, week_results)
    store.docs[paths.week(2)] = {
        "week_number": 2,
        "picks": week_picks,
        "leaderboards": {"weekly": [entry.model_dump() for entry in weekly], "season": []},
        "cache": {"last_updated": clock.now, "games_complete": 2, "invalidate_after": None},
        "game_results": {game_id: result.model_dump() for game_id, result in week_results.items()},
        "stats": calculate_week_stats(week_picks, weekly).model_dump(),
    }
