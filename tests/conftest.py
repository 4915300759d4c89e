"""
Pytest fixtures and configuration for all tests.
"""

import os
from datetime import date

import pytest

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")

from confidence_pool.core.config import Settings
from confidence_pool.models import GameResult
from confidence_pool.repositories.confidence_repository import ConfidencePaths
from confidence_pool.services.cache import LeaderboardCache
from confidence_pool.services.confidence_manager import ConfidenceManager
from confidence_pool.services.error_handler import ErrorHandler
from confidence_pool.services.game_feed import StaticGameResultFeed
from confidence_pool.services.integration import ConfidenceIntegration
from confidence_pool.services.legacy_leaderboard import LegacyLeaderboardService
from confidence_pool.services.performance_monitor import PerformanceMonitor

from fakes import (
    POOL_ID,
    SEASON,
    TUESDAY,
    FakeClock,
    FakeDocumentStore,
    FakeTimer,
    SleepRecorder,
    user_entry,
)


@pytest.fixture
def settings():
    return Settings(
        mongodb_uri="mongodb://localhost:27017",
        pool_id=POOL_ID,
        season=SEASON,
        season_start=date(2025, 9, 4),
        pool_timezone="America/New_York",
        espn_enabled=False,
    )


@pytest.fixture
def paths():
    return ConfidencePaths(POOL_ID, SEASON)


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def clock():
    return FakeClock(TUESDAY)


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def feed():
    return StaticGameResultFeed()


@pytest.fixture
def cache(timer):
    return LeaderboardCache(ttl_seconds=300, timer=timer)


@pytest.fixture
def manager(store, feed, settings, cache, clock):
    return ConfidenceManager(store, feed, settings, cache=cache, clock=clock)


@pytest.fixture
def error_handler(store, sleep, timer, clock):
    return ErrorHandler(connectivity_check=store.ping, sleep=sleep, timer=timer, clock=clock)


@pytest.fixture
def monitor(timer):
    return PerformanceMonitor(timer=timer)


@pytest.fixture
def legacy(manager, feed, clock):
    return LegacyLeaderboardService(
        manager.repository,
        manager.membership,
        feed,
        current_week=lambda: manager.current_week,
        clock=clock,
    )


@pytest.fixture
def integration(manager, legacy, error_handler, monitor):
    return ConfidenceIntegration(manager, legacy, error_handler, monitor)


@pytest.fixture
def members_doc():
    """Pool membership: carol opted out, dave predates the participation flag"""
    return {
        "alice": {"display_name": "Alice", "participation": {"confidence_enabled": True}},
        "bob": {"display_name": "Bob", "participation": {"confidence_enabled": True}},
        "carol": {"display_name": "Carol", "participation": {"confidence_enabled": False}},
        "dave": {"display_name": "Dave"},
    }


@pytest.fixture
def week_results():
    return {
        "g1": GameResult(winning_team="KC", completed=True),
        "g2": GameResult(winning_team="BUF", completed=True),
        "g3": GameResult(winning_team=None, completed=False),
    }


@pytest.fixture
def week_picks():
    return {
        "alice": user_entry("alice", "Alice", {"g1": ("KC", 3), "g2": ("BUF", 2), "g3": ("DAL", 1)}),
        "bob": user_entry("bob", "Bob", {"g1": ("KC", 1), "g2": ("MIA", 3), "g3": ("PHI", 2)}),
        "carol": user_entry("carol", "Carol", {"g1": ("KC", 3), "g2": ("BUF", 2), "g3": ("PHI", 1)}),
        "dave": user_entry("dave", "Dave", {"g1": ("LV", 3), "g2": ("BUF", 1), "g3": ("DAL", 2)}),
    }
