"""
🏈 ConfidenceManager - leaderboards from one document per week

Instead of reading one pick document per user (N reads per leaderboard),
every week keeps a single unified document with all picks plus the
precomputed boards:

- Weekly leaderboard: 1 read (the week document)
- Season leaderboard: 2 reads (season summary + current week document)

Expensive paths only run on a cache miss:
- Migration: the week document does not exist yet, or was flagged after
  legacy-only saves. Rebuilt from the legacy per-user documents
  (members + N reads, then one transaction)
- Refresh: the week document is stale, re-scored from its own picks

Reads never raise: store failures come back as
DisplayResult(success=False, fallback_required=True) so the caller can use
the legacy path.
"""

import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional
from zoneinfo import ZoneInfo

from confidence_pool.core.config import Settings
from confidence_pool.core.errors import ConfidencePoolError, GameFeedError, PartialWriteError, classify
from confidence_pool.models import (
    CacheMetadata,
    ConfidencePick,
    DisplayResult,
    GameResult,
    LeaderboardEntry,
    Leaderboards,
    SeasonSummary,
    SubmitResult,
    WeekDocument,
    META_KEY,
)
from confidence_pool.repositories.confidence_repository import ConfidencePaths, ConfidenceRepository
from confidence_pool.repositories.document_store import DocumentStore, Transaction
from confidence_pool.repositories.dual_write import DualPickWriter, PickSubmission
from confidence_pool.services import scoring
from confidence_pool.services.cache import LeaderboardCache, leaderboard_cache_key
from confidence_pool.services.game_feed import GameResultFeed
from confidence_pool.services.membership import MembershipDirectory

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
KEPT_LOAD_TIMES = 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes coming back from the store are UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReadCounter:
    """Store reads spent by one public call"""

    def __init__(self):
        self.reads = 0


class ConfidenceManager:
    def __init__(
        self,
        store: DocumentStore,
        feed: GameResultFeed,
        settings: Settings,
        cache: Optional[LeaderboardCache] = None,
        clock: Callable[[], datetime] = utc_now,
        current_week: Optional[int] = None,
    ):
        self.settings = settings
        self.pool_id = settings.pool_id
        self.season = settings.season
        self.tz = ZoneInfo(settings.pool_timezone)
        self.store = store
        self.feed = feed
        self.clock = clock

        self.paths = ConfidencePaths(settings.pool_id, settings.season)
        self.repository = ConfidenceRepository(store, self.paths)
        self.writer = DualPickWriter(store, self.paths)
        self.cache = cache or LeaderboardCache(ttl_seconds=settings.cache_ttl_seconds)
        self.membership = MembershipDirectory(self.repository, self.cache)

        self.pinned_week = current_week
        self.metrics = {
            "reads": 0,
            "writes": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "load_times": deque(maxlen=KEPT_LOAD_TIMES),
        }

        logger.info(f"✅ ConfidenceManager ready for pool {self.pool_id}, week {self.current_week}")

    @property
    def current_week(self) -> int:
        """The pinned week, otherwise the NFL week the clock is in right now"""
        if self.pinned_week is not None:
            return self.pinned_week
        return scoring.current_nfl_week(self.clock(), self.settings.season_start)

    # ============================================
    # 📌 STORE ACCESS (counted)
    # ============================================

    async def _read_week(
        self,
        week_number: int,
        counter: ReadCounter,
        txn: Optional[Transaction] = None,
    ) -> Optional[WeekDocument]:
        counter.reads += 1
        self.metrics["reads"] += 1
        return await self.repository.get_week(week_number, read=txn.get if txn else None)

    async def _read_summary(self, counter: ReadCounter, txn: Optional[Transaction] = None) -> Optional[SeasonSummary]:
        counter.reads += 1
        self.metrics["reads"] += 1
        return await self.repository.get_season_summary(read=txn.get if txn else None)

    async def _fetch_game_results(self, week_number: int, fallback: Mapping[str, GameResult]) -> dict[str, GameResult]:
        """Feed outages keep the last known results instead of failing the read"""
        try:
            return await self.feed.get_game_results(week_number)
        except GameFeedError as e:
            logger.warning(f"⚠️ Game results unavailable for week {week_number}, keeping stored results: {e}")
            return dict(fallback)

    def _elapsed_ms(self, start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    # ============================================
    # 📌 READ PATH
    # ============================================

    async def get_display_data(
        self,
        week_number: Optional[int] = None,
        force_refresh: bool = False,
        view_type: str = "leaderboard",
    ) -> DisplayResult:
        """
        Leaderboard for a week, or the season when week_number is None.

        Served from the cache when possible; otherwise 1 read for a week and
        2 reads for the season on the steady-state path.
        """
        start = time.perf_counter()
        cache_key = leaderboard_cache_key(self.pool_id, week_number, view_type)

        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.metrics["cache_hits"] += 1
                logger.debug(f"🎯 Cache hit for {cache_key}")
                return DisplayResult(
                    success=True,
                    data=cached["data"],
                    metadata=cached["metadata"],
                    from_cache=True,
                    load_time_ms=self._elapsed_ms(start),
                )

        self.metrics["cache_misses"] += 1
        try:
            if week_number is not None:
                result = await self._weekly_display_data(week_number, cache_key)
            else:
                result = await self._season_display_data(cache_key)
        except Exception as e:
            # Typed store errors and anything a malformed document raises while scoring
            target = f"week {week_number}" if week_number is not None else "season"
            logger.error(f"❌ Failed to load {target} leaderboard: {e}")
            return DisplayResult(
                success=False,
                fallback_required=True,
                error=str(e),
                error_kind=classify(e),
                load_time_ms=self._elapsed_ms(start),
            )

        result.load_time_ms = self._elapsed_ms(start)
        if result.success:
            self.metrics["load_times"].append(result.load_time_ms)
        return result

    async def _weekly_display_data(self, week_number: int, cache_key: str) -> DisplayResult:
        counter = ReadCounter()
        week = await self._read_week(week_number, counter)

        if week is None or week.cache.needs_migration:
            reason = "No unified data" if week is None else "Legacy-only saves pending"
            logger.info(f"⚠️ {reason} for week {week_number}, migrating")
            result = await self.migrate_week_to_unified(week_number, cache_key=cache_key, week=week)
            result.reads += counter.reads
            return result

        if self.is_data_stale(week):
            logger.info(f"🔄 Week {week_number} data is stale, refreshing")
            result = await self.refresh_week_data(week_number, week=week, cache_key=cache_key)
            result.reads += counter.reads
            return result

        entries = await self.membership.filter_entries(week.leaderboards.weekly)
        metadata = {
            "week_number": week_number,
            "last_updated": week.cache.last_updated,
            "games_complete": week.cache.games_complete,
            "total_users": week.stats.total_users,
        }
        self.cache.set(cache_key, {"data": entries, "metadata": metadata})
        logger.info(f"🚀 Week {week_number} leaderboard loaded ({counter.reads} read)")
        return DisplayResult(success=True, data=entries, metadata=metadata, reads=counter.reads)

    async def _season_display_data(self, cache_key: str) -> DisplayResult:
        counter = ReadCounter()
        summary = await self._read_summary(counter) or SeasonSummary()
        week = await self._read_week(self.current_week, counter)

        display_names = await self.membership.display_names()
        if week is not None:
            summary = self.merge_current_week_into_season(summary, week)
            display_names.update(week_display_names(week.picks))

        board = scoring.build_season_leaderboard(summary, display_names)
        entries = await self.membership.filter_entries(board)
        metadata = {
            "total_weeks": len(summary.weekly_totals),
            "last_updated": summary.last_updated,
            "total_users": len(summary.user_totals),
            "current_week": self.current_week,
        }
        self.cache.set(cache_key, {"data": entries, "metadata": metadata})
        logger.info(f"🚀 Season leaderboard loaded ({counter.reads} reads)")
        return DisplayResult(success=True, data=entries, metadata=metadata, reads=counter.reads)

    def is_data_stale(self, week: WeekDocument, now: Optional[datetime] = None) -> bool:
        """
        Stale after 10 minutes inside the game window (Thursday to Monday in
        the pool's timezone) and after 30 minutes the rest of the week.
        """
        last_updated = week.cache.last_updated
        if last_updated is None:
            return True

        now = as_utc(now or self.clock())
        weekday = now.astimezone(self.tz).weekday()
        in_game_window = weekday >= 3 or weekday == 0  # Thu, Fri, Sat, Sun, Mon
        minutes = self.settings.game_window_stale_minutes if in_game_window else self.settings.off_window_stale_minutes
        return now - as_utc(last_updated) > timedelta(minutes=minutes)

    def merge_current_week_into_season(self, summary: SeasonSummary, week: WeekDocument) -> SeasonSummary:
        """
        Folds the week's scores into the season aggregate when the week
        document is newer than the summary. Read-path only, nothing is written.
        """
        if not week.picks:
            return summary

        season_updated = as_utc(summary.last_updated) if summary.last_updated else EPOCH
        week_updated = as_utc(week.cache.last_updated) if week.cache.last_updated else as_utc(self.clock())
        if week_updated <= season_updated:
            return summary

        scores = scoring.weekly_scores(week.picks, week.game_results)
        return scoring.apply_week_to_season(summary, week.week_number, scores, week_updated)

    # ============================================
    # 📌 MIGRATION & REFRESH
    # ============================================

    async def migrate_week_to_unified(
        self,
        week_number: int,
        cache_key: Optional[str] = None,
        week: Optional[WeekDocument] = None,
    ) -> DisplayResult:
        """
        Builds the week document from the legacy per-user pick documents.

        A week with no legacy picks and no unified document returns an empty
        board and writes nothing. When a unified document exists (flagged
        after legacy-only saves) each user keeps whichever copy of their
        picks was submitted last.
        """
        cache_key = cache_key or leaderboard_cache_key(self.pool_id, week_number)
        counter = ReadCounter()

        user_ids = await self.membership.eligible_user_ids()
        counter.reads += 1
        self.metrics["reads"] += 1
        names = await self.membership.display_names()

        legacy_picks: dict[str, dict[str, Any]] = {}
        for user_id in user_ids:
            legacy = await self.repository.get_legacy_picks(week_number, user_id)
            counter.reads += 1
            self.metrics["reads"] += 1
            if legacy is None:
                continue
            user_picks: dict[str, Any] = dict(legacy.picks)
            user_picks[META_KEY] = {
                "display_name": names.get(user_id, "Unknown"),
                "user_id": user_id,
                "submission_time": legacy.submission_time,
            }
            legacy_picks[user_id] = user_picks

        if not legacy_picks and week is None:
            logger.info(f"⚠️ No legacy picks found for week {week_number}")
            return DisplayResult(
                success=True,
                data=[],
                metadata={"week_number": week_number, "migrated": True, "empty": True},
                reads=counter.reads,
            )

        stored_results = week.game_results if week is not None else {}
        game_results = await self._fetch_game_results(week_number, stored_results)
        rebuilt = await self._rebuild_week(week_number, game_results, counter, legacy_picks=legacy_picks)
        logger.info(
            f"✅ Week {week_number} migrated to unified format ({len(rebuilt.picks)} users, {counter.reads} reads)"
        )

        entries = await self.membership.filter_entries(rebuilt.leaderboards.weekly)
        metadata = {"week_number": week_number, "migrated": True, "total_users": len(rebuilt.picks)}
        self.cache.set(cache_key, {"data": entries, "metadata": metadata})
        return DisplayResult(success=True, data=entries, metadata=metadata, reads=counter.reads)

    async def refresh_week_data(
        self,
        week_number: int,
        week: Optional[WeekDocument] = None,
        cache_key: Optional[str] = None,
    ) -> DisplayResult:
        """Re-scores the week from its stored picks with fresh game results"""
        cache_key = cache_key or leaderboard_cache_key(self.pool_id, week_number)
        counter = ReadCounter()

        if week is None:
            week = await self._read_week(week_number, counter)
            if week is None:
                result = await self.migrate_week_to_unified(week_number, cache_key=cache_key)
                result.reads += counter.reads
                return result

        game_results = await self._fetch_game_results(week_number, week.game_results)
        week = await self._rebuild_week(week_number, game_results, counter)
        logger.info(f"✅ Week {week_number} data refreshed")

        entries = await self.membership.filter_entries(week.leaderboards.weekly)
        metadata = {
            "week_number": week_number,
            "last_updated": week.cache.last_updated,
            "games_complete": week.cache.games_complete,
            "refreshed": True,
        }
        self.cache.set(cache_key, {"data": entries, "metadata": metadata})
        return DisplayResult(success=True, data=entries, metadata=metadata, reads=counter.reads)

    async def _rebuild_week(
        self,
        week_number: int,
        game_results: dict[str, GameResult],
        counter: ReadCounter,
        legacy_picks: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> WeekDocument:
        """
        Scores the week and writes it with the season summary in one
        transaction. Game results are fetched before it starts; the picks are
        the ones stored when the transaction reads the week, so submissions
        that commit while the feed is answering are kept.
        """

        async def body(txn: Transaction) -> WeekDocument:
            current = await self._read_week(week_number, counter, txn)
            picks = merge_user_picks(current.picks if current is not None else {}, legacy_picks or {})

            now = self.clock()
            rebuilt = WeekDocument(
                week_number=week_number,
                picks=picks,
                game_results=game_results,
                leaderboards=await self.calculate_leaderboards(picks, game_results, week_number, counter, txn),
                cache=CacheMetadata(
                    last_updated=now,
                    games_complete=scoring.count_complete_games(game_results),
                    invalidate_after=scoring.end_of_nfl_week(as_utc(now), self.tz),
                ),
            )
            rebuilt.stats = scoring.calculate_week_stats(rebuilt.picks, rebuilt.leaderboards.weekly)
            self.repository.stage_week(txn, rebuilt)
            return rebuilt

        week = await self.store.run_transaction(body)
        self.metrics["writes"] += 2
        return week

    async def mark_week_for_migration(self, week_number: int) -> bool:
        """
        Flags the week document after picks were saved to the legacy layout
        only, so the next read rebuilds it from the legacy documents.

        Returns False when there is no week document (the next read migrates
        anyway) or it is already flagged.
        """

        async def body(txn: Transaction) -> bool:
            week = await self.repository.get_week(week_number, read=txn.get)
            if week is None or week.cache.needs_migration:
                return False
            week.cache.needs_migration = True
            self.repository.stage_week(txn, week)
            return True

        marked = await self.store.run_transaction(body)
        self.invalidate_cache(week_number)
        if marked:
            self.metrics["writes"] += 1
            logger.info(f"🔄 Week {week_number} flagged for migration from legacy picks")
        return marked

    # ============================================
    # 📌 SCORING
    # ============================================

    async def calculate_leaderboards(
        self,
        picks: Mapping[str, Mapping[str, Any]],
        game_results: Mapping[str, GameResult],
        week_number: int,
        counter: Optional[ReadCounter] = None,
        txn: Optional[Transaction] = None,
    ) -> Leaderboards:
        """Weekly board for the picks, and the season board after recording this week"""
        weekly = scoring.build_weekly_leaderboard(picks, game_results)
        scores = {entry.user_id: entry.score for entry in weekly}
        season = await self.update_season_totals(scores, week_number, week_display_names(picks), counter, txn)
        return Leaderboards(weekly=weekly, season=season)

    async def update_season_totals(
        self,
        weekly_scores: Mapping[str, int],
        week_number: int,
        display_names: Optional[Mapping[str, str]] = None,
        counter: Optional[ReadCounter] = None,
        txn: Optional[Transaction] = None,
    ) -> list[LeaderboardEntry]:
        """
        Records the week's scores in the season summary. The summary is read
        and written back in one transaction (the caller's, or its own).
        """
        counter = counter or ReadCounter()
        if txn is None:
            season = await self.store.run_transaction(
                lambda own: self.update_season_totals(weekly_scores, week_number, display_names, counter, own)
            )
            self.metrics["writes"] += 1
            return season

        summary = await self._read_summary(counter, txn) or SeasonSummary()
        summary = scoring.apply_week_to_season(summary, week_number, weekly_scores, self.clock())
        self.repository.stage_season_summary(txn, summary)
        return scoring.build_season_leaderboard(summary, display_names)

    # ============================================
    # 📌 WRITE PATH
    # ============================================

    async def submit_user_picks(
        self,
        week_number: int,
        user_id: str,
        picks: Mapping[str, Any],
        display_name: str,
    ) -> SubmitResult:
        """
        Dual write of the user's picks: unified week document plus the legacy
        per-user document, in one transaction.

        If the transaction fails the two writes are retried one after the
        other. A failure there can leave the unified document written without
        its legacy copy; that case is reported with partial_write=True.
        """
        start = time.perf_counter()
        submission = PickSubmission(
            week_number=week_number,
            user_id=user_id,
            picks=coerce_picks(picks),
            display_name=display_name,
            submitted_at=self.clock(),
        )
        logger.info(f"💎 Dual-write pick submission for user {user_id}, week {week_number}")

        used_fallback = False
        try:
            writes = await self.writer.write_transactional(submission)
        except ConfidencePoolError as e:
            logger.warning(f"⚠️ Pick transaction failed, falling back to separate writes: {e}")
            used_fallback = True
            try:
                writes = await self.writer.write_sequential(submission)
            except PartialWriteError as pe:
                if pe.writes_landed:
                    self.invalidate_cache(week_number)
                logger.error(
                    f"❌ Pick submission failed for user {user_id}, week {week_number} "
                    f"({pe.writes_landed} of {len(self.writer.sinks)} writes landed)"
                )
                return SubmitResult(
                    success=False,
                    writes_executed=pe.writes_landed,
                    used_fallback=True,
                    partial_write=pe.writes_landed > 0,
                    error=str(pe),
                    error_kind=pe.kind,
                    load_time_ms=self._elapsed_ms(start),
                )

        self.metrics["writes"] += writes
        self.invalidate_cache(week_number)
        load_time = self._elapsed_ms(start)
        logger.info(f"✅ Dual-write completed in {load_time:.0f}ms ({writes} writes)")
        return SubmitResult(success=True, writes_executed=writes, used_fallback=used_fallback, load_time_ms=load_time)

    async def load_user_picks(self, week_number: int, user_id: str) -> dict[str, ConfidencePick]:
        """A user's picks for the week, from the unified document or the legacy one"""
        counter = ReadCounter()
        week = await self._read_week(week_number, counter)
        if week is not None:
            user_picks = week.picks.get(user_id, {})
        else:
            legacy = await self.repository.get_legacy_picks(week_number, user_id)
            self.metrics["reads"] += 1
            user_picks = legacy.picks if legacy is not None else {}
        return {
            game_id: ConfidencePick.model_validate(pick)
            for game_id, pick in scoring.iter_game_picks(user_picks)
        }

    # ============================================
    # 📌 CACHE & DIAGNOSTICS
    # ============================================

    def invalidate_cache(self, week_number: int) -> int:
        return self.cache.invalidate_week(self.pool_id, week_number)

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("🗑️ All caches cleared")

    def get_metrics(self) -> dict:
        lookups = self.metrics["cache_hits"] + self.metrics["cache_misses"]
        load_times = self.metrics["load_times"]
        return {
            "total_reads": self.metrics["reads"],
            "membership_reads": self.membership.reads,
            "total_writes": self.metrics["writes"],
            "cache_hits": self.metrics["cache_hits"],
            "cache_misses": self.metrics["cache_misses"],
            "cache_hit_rate": round(self.metrics["cache_hits"] / lookups * 100, 2) if lookups else 0.0,
            "average_load_time_ms": round(sum(load_times) / len(load_times), 2) if load_times else 0.0,
            "cache_size": self.cache.size,
        }

    async def health_check(self) -> dict:
        result = await self.get_display_data(self.current_week)
        health = {
            "status": "healthy" if result.success else "error",
            "load_time_ms": result.load_time_ms,
            "metrics": self.get_metrics(),
            "current_week": self.current_week,
            "cache_size": self.cache.size,
        }
        if not result.success:
            health["error"] = result.error
        return health


def coerce_picks(picks: Mapping[str, Any]) -> dict[str, ConfidencePick]:
    return {
        game_id: pick if isinstance(pick, ConfidencePick) else ConfidencePick.model_validate(pick)
        for game_id, pick in picks.items()
    }


def week_display_names(picks: Mapping[str, Mapping[str, Any]]) -> dict[str, str]:
    """{user_id: display_name} from the `meta` entries of a week's picks"""
    names = {}
    for user_id, user_picks in picks.items():
        meta = user_picks.get(META_KEY) or {}
        if meta.get("display_name"):
            names[user_id] = meta["display_name"]
    return names


def submission_time(user_picks: Mapping[str, Any]) -> datetime:
    meta = user_picks.get(META_KEY) or {}
    value = meta.get("submission_time")
    return as_utc(value) if isinstance(value, datetime) else EPOCH


def merge_user_picks(
    stored: Mapping[str, dict[str, Any]],
    legacy: Mapping[str, dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    """Stored picks, replaced per user by a strictly newer legacy submission"""
    merged = dict(stored)
    for user_id, user_picks in legacy.items():
        if user_id not in merged or submission_time(user_picks) > submission_time(merged[user_id]):
            merged[user_id] = user_picks
    return merged
