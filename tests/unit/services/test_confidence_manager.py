"""
Unit tests for ConfidenceManager
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from confidence_pool.core.errors import ErrorKind, StoreUnavailableError, TransactionFailedError
from confidence_pool.models import ConfidencePick, GameResult, SeasonSummary, WeekDocument
from confidence_pool.repositories.confidence_repository import dump_document
from confidence_pool.services import scoring
from confidence_pool.services.confidence_manager import ConfidenceManager

from fakes import SUNDAY, TUESDAY, GatedGameResultFeed, user_entry


def seed_week(store, paths, week_number, picks, results, last_updated):
    week = WeekDocument(week_number=week_number, picks=picks, game_results=results)
    week.leaderboards.weekly = scoring.build_weekly_leaderboard(picks, results)
    week.stats = scoring.calculate_week_stats(picks, week.leaderboards.weekly)
    week.cache.last_updated = last_updated
    store.docs[paths.week(week_number)] = dump_document(week)
    return week


def many_users(count):
    picks = {}
    members = {}
    for i in range(count):
        user_id = f"user{i:03d}"
        team = "KC" if i % 2 else "BUF"
        picks[user_id] = user_entry(user_id, f"Player {i}", {"g1": (team, 1 + i % 16)})
        members[user_id] = {"display_name": f"Player {i}"}
    return picks, members


class TestReadBound:
    """Steady-state reads do not depend on the pool size."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pool_size", [5, 200])
    async def test_week_view_is_one_read(self, manager, store, paths, clock, pool_size):
        picks, members = many_users(pool_size)
        store.docs[paths.members()] = members
        seed_week(store, paths, 2, picks, {"g1": GameResult(winning_team="KC", completed=True)}, clock.now)
        await manager.membership.get_members()
        store.reset_logs()

        result = await manager.get_display_data(2)

        assert result.success is True
        assert result.reads == 1
        assert store.read_log == [paths.week(2)]
        assert len(result.data) == pool_size

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pool_size", [5, 200])
    async def test_season_view_is_two_reads(self, manager, store, paths, clock, pool_size):
        picks, members = many_users(pool_size)
        store.docs[paths.members()] = members
        store.docs[paths.season_summary()] = dump_document(
            SeasonSummary(
                weekly_totals={"1": {user_id: 3 for user_id in picks}},
                user_totals={user_id: 3 for user_id in picks},
                last_updated=clock.now - timedelta(days=7),
            )
        )
        seed_week(store, paths, 2, picks, {"g1": GameResult(winning_team="KC", completed=True)}, clock.now)
        await manager.membership.get_members()
        store.reset_logs()

        result = await manager.get_display_data()

        assert result.success is True
        assert result.reads == 2
        assert sorted(store.read_log) == sorted([paths.season_summary(), paths.week(2)])
        assert len(result.data) == pool_size


class TestCaching:

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, manager, store, paths, clock, timer, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        first = await manager.get_display_data(2)
        second = await manager.get_display_data(2)

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.data == first.data
        assert store.read_log.count(paths.week(2)) == 1

        timer.advance(300)
        third = await manager.get_display_data(2)

        assert third.from_cache is False
        assert store.read_log.count(paths.week(2)) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)
        await manager.get_display_data(2)

        result = await manager.get_display_data(2, force_refresh=True)

        assert result.from_cache is False
        assert store.read_log.count(paths.week(2)) == 2

    @pytest.mark.asyncio
    async def test_metrics(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)
        await manager.get_display_data(2)
        await manager.get_display_data(2)

        metrics = manager.get_metrics()

        assert metrics["total_reads"] == 1
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["cache_hit_rate"] == 50.0
        assert metrics["cache_size"] >= 1


class TestStaleness:

    def _week(self, last_updated):
        week = WeekDocument(week_number=2)
        week.cache.last_updated = last_updated
        return week

    def test_eleven_minutes_on_sunday_is_stale(self, manager):
        assert manager.is_data_stale(self._week(SUNDAY - timedelta(minutes=11)), now=SUNDAY) is True

    def test_eleven_minutes_on_tuesday_is_fresh(self, manager):
        assert manager.is_data_stale(self._week(TUESDAY - timedelta(minutes=11)), now=TUESDAY) is False

    def test_thirty_one_minutes_on_tuesday_is_stale(self, manager):
        assert manager.is_data_stale(self._week(TUESDAY - timedelta(minutes=31)), now=TUESDAY) is True

    def test_no_timestamp_is_stale(self, manager):
        assert manager.is_data_stale(WeekDocument(week_number=2)) is True


class TestRefreshAndMigration:

    @pytest.mark.asyncio
    async def test_stale_week_is_rescored(self, manager, store, paths, clock, feed, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, {}, clock.now - timedelta(minutes=40))
        feed.set_results(2, week_results)

        result = await manager.get_display_data(2)

        assert result.success is True
        assert result.metadata["refreshed"] is True
        stored = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert stored.cache.last_updated == clock.now
        assert stored.cache.games_complete == 2
        assert {e.user_id: e.score for e in stored.leaderboards.weekly}["alice"] == 5
        summary = SeasonSummary.model_validate(store.docs[paths.season_summary()])
        assert summary.weekly_totals["2"]["alice"] == 5

    @pytest.mark.asyncio
    async def test_empty_migration_writes_nothing(self, manager, store, paths, members_doc):
        store.docs[paths.members()] = members_doc

        result = await manager.migrate_week_to_unified(5)

        assert result.success is True
        assert result.data == []
        assert result.metadata == {"week_number": 5, "migrated": True, "empty": True}
        assert paths.week(5) not in store.docs
        assert store.write_log == []

    @pytest.mark.asyncio
    async def test_missing_week_is_migrated(self, manager, store, paths, feed, members_doc, week_results):
        store.docs[paths.members()] = members_doc
        store.docs[paths.legacy_picks(2, "alice")] = {
            "submission_time": None,
            "picks": {
                "g1": {"winning_team_choice": "KC", "confidence_points": 3},
                "g2": {"winning_team_choice": "BUF", "confidence_points": 2},
            },
        }
        store.docs[paths.legacy_picks(2, "bob")] = {
            "submission_time": None,
            "picks": {"g1": {"winning_team_choice": "KC", "confidence_points": 1}},
        }
        feed.set_results(2, week_results)

        result = await manager.get_display_data(2)

        assert result.success is True
        assert result.metadata["migrated"] is True
        assert [(e.user_id, e.display_name, e.score) for e in result.data] == [
            ("alice", "Alice", 5),
            ("bob", "Bob", 1),
        ]
        stored = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert set(stored.picks) == {"alice", "bob"}
        assert stored.picks["alice"]["meta"]["display_name"] == "Alice"
        # carol has the feature disabled, so her legacy doc is never read
        assert paths.legacy_picks(2, "carol") not in store.read_log

    @pytest.mark.asyncio
    async def test_submission_during_refresh_is_kept(self, store, paths, settings, cache, clock, week_results):
        feed = GatedGameResultFeed(week_results)
        manager = ConfidenceManager(store, feed, settings, cache=cache, clock=clock)
        seed_week(store, paths, 2, {"alice": user_entry("alice", "Alice", {"g1": ("KC", 3)})}, {}, clock.now - timedelta(minutes=40))

        refresh = asyncio.create_task(manager.get_display_data(2))
        await feed.entered.wait()
        submitted = await manager.submit_user_picks(
            2, "bob", {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}, "Bob"
        )
        feed.release()
        result = await refresh

        assert submitted.success is True
        assert [(e.user_id, e.score) for e in result.data] == [("alice", 3), ("bob", 2)]
        stored = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert set(stored.picks) == {"alice", "bob"}
        summary = SeasonSummary.model_validate(store.docs[paths.season_summary()])
        assert summary.weekly_totals["2"] == {"alice": 3, "bob": 2}

    @pytest.mark.asyncio
    async def test_season_totals_are_written_in_a_transaction(self, manager, store, paths):
        store.docs[paths.season_summary()] = dump_document(
            SeasonSummary(weekly_totals={"1": {"alice": 4}}, user_totals={"alice": 4})
        )

        board = await manager.update_season_totals({"alice": 3, "bob": 1}, 2, {"alice": "Alice"})
        assert [(e.user_id, e.score) for e in board] == [("alice", 7), ("bob", 1)]

        store.fail_transaction = TransactionFailedError("write conflict")
        with pytest.raises(TransactionFailedError):
            await manager.update_season_totals({"alice": 5}, 3)
        summary = SeasonSummary.model_validate(store.docs[paths.season_summary()])
        assert set(summary.weekly_totals) == {"1", "2"}


class TestLegacyOnlySaves:

    @pytest.mark.asyncio
    async def test_flagged_week_is_rebuilt_from_legacy(self, manager, store, paths, clock, feed, members_doc, week_results):
        store.docs[paths.members()] = members_doc
        seed_week(store, paths, 2, {"alice": user_entry("alice", "Alice", {"g1": ("KC", 3)})}, week_results, clock.now)
        store.docs[paths.legacy_picks(2, "bob")] = {
            "submission_time": clock.now,
            "picks": {"g1": {"winning_team_choice": "KC", "confidence_points": 2}},
        }
        feed.set_results(2, week_results)

        assert await manager.mark_week_for_migration(2) is True
        result = await manager.get_display_data(2)

        assert result.metadata["migrated"] is True
        assert [(e.user_id, e.score) for e in result.data] == [("alice", 3), ("bob", 2)]
        stored = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert stored.cache.needs_migration is False
        assert stored.picks["bob"]["meta"]["display_name"] == "Bob"

    @pytest.mark.asyncio
    async def test_newer_legacy_picks_replace_stored_ones(self, manager, store, paths, clock, feed, members_doc, week_results):
        store.docs[paths.members()] = members_doc
        seed_week(store, paths, 2, {"alice": user_entry("alice", "Alice", {"g1": ("KC", 3)})}, week_results, clock.now)
        store.docs[paths.legacy_picks(2, "alice")] = {
            "submission_time": clock.now,
            "picks": {"g1": {"winning_team_choice": "LV", "confidence_points": 3}},
        }
        feed.set_results(2, week_results)

        await manager.mark_week_for_migration(2)
        result = await manager.get_display_data(2)

        assert [(e.user_id, e.score) for e in result.data] == [("alice", 0)]
        stored = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert stored.picks["alice"]["g1"]["winning_team_choice"] == "LV"

    @pytest.mark.asyncio
    async def test_mark_without_week_writes_nothing(self, manager, store):
        assert await manager.mark_week_for_migration(2) is False
        assert store.write_log == []


class TestCurrentWeek:
    def test_follows_the_clock(self, manager, clock):
        assert manager.current_week == 2

        clock.advance(days=21)
        assert manager.current_week == 5

    def test_pinned_week(self, store, feed, settings, clock):
        manager = ConfidenceManager(store, feed, settings, clock=clock, current_week=7)

        clock.advance(days=21)
        assert manager.current_week == 7

    @pytest.mark.asyncio
    async def test_season_view_follows_the_clock(self, manager, store, paths, clock):
        clock.advance(days=21)

        result = await manager.get_display_data()

        assert paths.week(5) in store.read_log
        assert result.metadata["current_week"] == 5


class TestParticipationFilter:

    @pytest.mark.asyncio
    async def test_opted_out_user_is_hidden(self, manager, store, paths, clock, members_doc, week_picks, week_results):
        store.docs[paths.members()] = members_doc
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        result = await manager.get_display_data(2)

        user_ids = [e.user_id for e in result.data]
        assert "carol" not in user_ids
        assert "dave" in user_ids
        assert [(e.user_id, e.rank) for e in result.data] == [("alice", 1), ("bob", 2), ("dave", 2)]

    @pytest.mark.asyncio
    async def test_user_missing_from_members_is_hidden(self, manager, store, paths, clock, week_picks, week_results):
        store.docs[paths.members()] = {"alice": {"display_name": "Alice"}}
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        result = await manager.get_display_data(2)

        assert [e.user_id for e in result.data] == ["alice"]

    @pytest.mark.asyncio
    async def test_no_members_document_means_no_filter(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        result = await manager.get_display_data(2)

        assert len(result.data) == 4

    @pytest.mark.asyncio
    async def test_season_view_is_filtered(self, manager, store, paths, clock, members_doc, week_picks, week_results):
        store.docs[paths.members()] = members_doc
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        result = await manager.get_display_data()

        assert "carol" not in [e.user_id for e in result.data]


class TestSeasonMerge:

    @pytest.mark.asyncio
    async def test_newer_week_is_merged(self, manager, store, paths, clock, week_picks, week_results):
        store.docs[paths.season_summary()] = dump_document(
            SeasonSummary(
                weekly_totals={"1": {"alice": 10, "bob": 20}},
                user_totals={"alice": 10, "bob": 20},
                last_updated=clock.now - timedelta(days=3),
            )
        )
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        result = await manager.get_display_data()

        totals = {e.user_id: e.score for e in result.data}
        assert totals == {"alice": 15, "bob": 21, "carol": 5, "dave": 1}
        assert {e.user_id: e.display_name for e in result.data}["bob"] == "Bob"
        # read-path merge only
        assert paths.season_summary() not in store.write_log

    def test_older_week_is_ignored(self, manager, clock):
        summary = SeasonSummary(user_totals={"alice": 10}, weekly_totals={"1": {"alice": 10}}, last_updated=clock.now)
        week = WeekDocument(week_number=2, picks={"alice": user_entry("alice", "Alice", {"g1": ("KC", 3)})})
        week.cache.last_updated = clock.now - timedelta(hours=1)

        assert manager.merge_current_week_into_season(summary, week) is summary


class TestSubmitPicks:

    @pytest.mark.asyncio
    async def test_dual_write(self, manager, store, paths):
        picks = {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}

        result = await manager.submit_user_picks(2, "alice", picks, "Alice")

        assert result.success is True
        assert result.writes_executed == 2
        assert result.used_fallback is False
        unified = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert unified.picks["alice"]["g1"]["winning_team_choice"] == "KC"
        assert unified.picks["alice"]["meta"]["display_name"] == "Alice"
        assert unified.stats.total_users == 1
        legacy = store.docs[paths.legacy_picks(2, "alice")]
        assert legacy["picks"] == {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}

    @pytest.mark.asyncio
    async def test_submissions_from_two_users_are_kept(self, manager, store, paths):
        await manager.submit_user_picks(2, "alice", {"g1": ConfidencePick(winning_team_choice="KC", confidence_points=1)}, "Alice")
        await manager.submit_user_picks(2, "bob", {"g1": ConfidencePick(winning_team_choice="BUF", confidence_points=1)}, "Bob")

        unified = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert set(unified.picks) == {"alice", "bob"}

    @pytest.mark.asyncio
    async def test_resubmission_replaces_previous_picks(self, manager, store, paths):
        await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 1}}, "Alice")
        await manager.submit_user_picks(2, "alice", {"g2": {"winning_team_choice": "BUF", "confidence_points": 1}}, "Alice")

        unified = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert set(unified.picks["alice"]) == {"g2", "meta"}

    @pytest.mark.asyncio
    async def test_submit_invalidates_week_and_season_cache(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)
        await manager.get_display_data(2)
        await manager.get_display_data()

        await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 1}}, "Alice")

        assert (await manager.get_display_data(2)).from_cache is False
        assert (await manager.get_display_data()).from_cache is False

    @pytest.mark.asyncio
    async def test_transaction_failure_falls_back_to_separate_writes(self, manager, store, paths):
        store.fail_transaction = TransactionFailedError("write conflict")

        result = await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}, "Alice")

        assert result.success is True
        assert result.used_fallback is True
        assert result.writes_executed == 2
        assert store.write_log == [paths.week(2), paths.legacy_picks(2, "alice")]
        assert store.docs[paths.week(2)]["picks"]["alice"]["g1"]["confidence_points"] == 2
        assert store.docs[paths.legacy_picks(2, "alice")]["picks"]["g1"]["confidence_points"] == 2

    @pytest.mark.asyncio
    async def test_failed_second_write_is_reported_as_partial(self, manager, store, paths):
        store.fail_transaction = TransactionFailedError("write conflict")
        store.fail_writes["/picks/"] = StoreUnavailableError("legacy store down")

        result = await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}, "Alice")

        assert result.success is False
        assert result.used_fallback is True
        assert result.partial_write is True
        assert result.writes_executed == 1
        assert result.error_kind == ErrorKind.NETWORK
        # the unified write landed and stays
        assert "alice" in store.docs[paths.week(2)]["picks"]
        assert paths.legacy_picks(2, "alice") not in store.docs

    @pytest.mark.asyncio
    async def test_failed_first_write_is_not_partial(self, manager, store, paths):
        store.fail_transaction = TransactionFailedError("write conflict")
        store.fail_writes["/confidence/"] = StoreUnavailableError("store down")

        result = await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 2}}, "Alice")

        assert result.success is False
        assert result.partial_write is False
        assert result.writes_executed == 0
        assert store.docs == {}

    @pytest.mark.asyncio
    async def test_submit_rescored_against_stored_results(self, manager, store, paths, clock, week_results):
        seed_week(store, paths, 2, {}, week_results, clock.now)

        await manager.submit_user_picks(2, "alice", {"g1": {"winning_team_choice": "KC", "confidence_points": 4}}, "Alice")

        unified = WeekDocument.model_validate(store.docs[paths.week(2)])
        assert [(e.user_id, e.score) for e in unified.leaderboards.weekly] == [("alice", 4)]


class TestLoadUserPicks:

    @pytest.mark.asyncio
    async def test_from_unified_document(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        picks = await manager.load_user_picks(2, "alice")

        assert set(picks) == {"g1", "g2", "g3"}
        assert picks["g1"].confidence_points == 3

    @pytest.mark.asyncio
    async def test_from_legacy_document(self, manager, store, paths):
        store.docs[paths.legacy_picks(2, "bob")] = {
            "submission_time": None,
            "picks": {"g1": {"winning_team_choice": "KC", "confidence_points": 1}},
        }

        picks = await manager.load_user_picks(2, "bob")

        assert picks == {"g1": ConfidencePick(winning_team_choice="KC", confidence_points=1)}


class TestFailures:

    @pytest.mark.asyncio
    async def test_store_failure_requests_fallback(self, manager, store):
        store.fail_reads["/weeks/"] = StoreUnavailableError("connection refused")

        result = await manager.get_display_data(2)

        assert result.success is False
        assert result.fallback_required is True
        assert result.error_kind == ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_corrupt_document_requests_fallback(self, manager, store, paths):
        store.docs[paths.week(2)] = {"week_number": "not a number"}

        result = await manager.get_display_data(2)

        assert result.fallback_required is True
        assert result.error_kind == ErrorKind.DATA

    @pytest.mark.asyncio
    async def test_malformed_pick_requests_fallback(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now - timedelta(minutes=40))
        store.docs[paths.week(2)]["picks"]["alice"]["g1"]["confidence_points"] = "lots"

        result = await manager.get_display_data(2)

        assert result.success is False
        assert result.fallback_required is True
        assert result.error_kind == ErrorKind.DATA

    @pytest.mark.asyncio
    async def test_unexpected_error_requests_fallback(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)
        manager.membership.filter_entries = AsyncMock(side_effect=RuntimeError("boom"))

        result = await manager.get_display_data(2)

        assert result.fallback_required is True
        assert result.error_kind == ErrorKind.UNKNOWN
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_health_check(self, manager, store, paths, clock, week_picks, week_results):
        seed_week(store, paths, 2, week_picks, week_results, clock.now)

        health = await manager.health_check()

        assert health["status"] == "healthy"
        assert health["current_week"] == 2

    @pytest.mark.asyncio
    async def test_health_check_reports_error(self, manager, store):
        store.fail_reads["/weeks/"] = StoreUnavailableError("connection refused")

        health = await manager.health_check()

        assert health["status"] == "error"
        assert "connection refused" in health["error"]
