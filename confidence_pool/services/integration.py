"""
🔗 ConfidenceIntegration - the surface external callers use

compute_leaderboard / display_leaderboard / save_user_picks keep the shapes
older callers expect. Each tries the unified manager first and falls back to
the legacy per-user implementation when:
- the mode flag is "legacy"
- the unified circuit breaker is open
- the manager asks for a fallback or raises

Legacy failures go through the ErrorHandler and end as safe defaults for
reads and as an explicit failure for writes. While the legacy circuit
breaker is open the legacy path is skipped and those defaults are returned
right away.
"""

import logging
import time
from typing import Any, Mapping, Optional

from confidence_pool.core.errors import CircuitOpenError, classify
from confidence_pool.models import ConfidencePick, LeaderboardEntry, SubmitResult
from confidence_pool.services.confidence_manager import ConfidenceManager, coerce_picks
from confidence_pool.services.error_handler import (
    LEADERBOARD_CONTEXT,
    LEGACY,
    PICKS_CONTEXT,
    UNIFIED,
    ErrorHandler,
)
from confidence_pool.services.legacy_leaderboard import LegacyLeaderboardService
from confidence_pool.services.performance_monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

MODES = (UNIFIED, LEGACY)
EMPTY_LEADERBOARD_MESSAGE = "No leaderboard data available"


def to_legacy_standings(entries: list[LeaderboardEntry]) -> list[dict]:
    """Leaderboard rows in the shape the older callers render"""
    return [
        {
            "uid": entry.user_id,
            "display_name": entry.display_name,
            "total_score": entry.score,
            "rank": entry.rank,
        }
        for entry in entries
    ]


class ConfidenceIntegration:
    def __init__(
        self,
        manager: ConfidenceManager,
        legacy: LegacyLeaderboardService,
        error_handler: ErrorHandler,
        monitor: PerformanceMonitor,
        mode: str = UNIFIED,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown integration mode: {mode}")
        self.manager = manager
        self.legacy = legacy
        self.error_handler = error_handler
        self.monitor = monitor
        self.mode = mode

        # Resource exhaustion: drop caches and move to the lighter path
        error_handler.register_resource_hook(manager.clear_cache)
        error_handler.register_resource_hook(self.enable_legacy_mode)

        logger.info(f"🔗 ConfidenceIntegration ready ({mode} mode)")

    def _unified_available(self) -> bool:
        if self.mode != UNIFIED:
            return False
        if self.error_handler.is_circuit_open(UNIFIED):
            logger.warning("⚠️ Unified circuit open, using legacy path")
            return False
        return True

    def _legacy_available(self) -> bool:
        if self.error_handler.is_circuit_open(LEGACY):
            logger.warning("⚠️ Legacy circuit open, skipping legacy path")
            return False
        return True

    # ============================================
    # 📌 LEADERBOARDS
    # ============================================

    async def compute_leaderboard(self, week_number: Optional[int] = None) -> list[dict]:
        operation = f"leaderboard_week_{week_number}" if week_number is not None else "leaderboard_season"

        if self._unified_available():
            try:
                result = await self.manager.get_display_data(week_number)
            except Exception as e:
                logger.error(f"❌ Unified leaderboard raised, switching to legacy: {e}")
                self.error_handler.record_failure(UNIFIED)
                # The legacy path below answers this request
                self.monitor.track_error(e, operation, failed_request=False)
            else:
                if result.success:
                    self.error_handler.record_success(UNIFIED)
                    if result.from_cache:
                        self.monitor.track_cache_hit(operation, result.load_time_ms)
                    else:
                        self.monitor.track_read(operation, result.load_time_ms, reads=result.reads)
                    source = "cached" if result.from_cache else f"{result.reads} reads"
                    logger.info(f"🚀 UNIFIED: {operation} in {result.load_time_ms:.0f}ms ({source})")
                    return to_legacy_standings(result.data)

                logger.warning(f"⚠️ Unified system requested fallback: {result.error}")
                self.error_handler.record_failure(UNIFIED)

        return await self._legacy_leaderboard(week_number, operation)

    async def _legacy_leaderboard(self, week_number: Optional[int], operation: str) -> list[dict]:
        if not self._legacy_available():
            self.monitor.track_error(CircuitOpenError("legacy circuit open"), operation)
            return to_legacy_standings(self.error_handler.safe_default(LEADERBOARD_CONTEXT)["data"])

        start = time.perf_counter()
        reads_before = self.legacy.reads
        try:
            entries = await self.legacy.calculate_leaderboard(week_number)
        except Exception as e:
            handled = await self.error_handler.handle_error(
                e,
                LEADERBOARD_CONTEXT,
                LEGACY,
                retry=lambda: self.legacy.calculate_leaderboard(week_number),
            )
            self.monitor.track_error(e, operation, recovered="recovery_type" in handled)
            return to_legacy_standings(handled.get("data") or [])

        self.error_handler.record_success(LEGACY)
        load_time = round((time.perf_counter() - start) * 1000, 2)
        self.monitor.track_read(operation, load_time, reads=self.legacy.reads - reads_before)
        return to_legacy_standings(entries)

    async def display_leaderboard(self, week_number: Optional[int] = None) -> dict:
        """Standings plus what a renderer shows around them"""
        start = time.perf_counter()
        standings = await self.compute_leaderboard(week_number)
        return {
            "standings": standings,
            "message": None if standings else EMPTY_LEADERBOARD_MESSAGE,
            "load_time_ms": round((time.perf_counter() - start) * 1000, 2),
        }

    # ============================================
    # 📌 PICKS
    # ============================================

    async def save_user_picks(
        self,
        week_number: int,
        user_id: str,
        picks: Mapping[str, Any],
        display_name: str,
    ) -> SubmitResult:
        picks = coerce_picks(picks)

        if self._unified_available():
            try:
                result = await self.manager.submit_user_picks(week_number, user_id, picks, display_name)
            except Exception as e:
                logger.error(f"❌ Unified save raised, falling back to legacy: {e}")
                self.error_handler.record_failure(UNIFIED)
            else:
                if result.success:
                    self.error_handler.record_success(UNIFIED)
                    return result
                # A partial write left the unified doc without its legacy copy;
                # the legacy save below writes exactly that copy
                logger.warning(f"⚠️ Unified save failed, falling back to legacy: {result.error}")
                self.error_handler.record_failure(UNIFIED)

        return await self._legacy_save(week_number, user_id, picks, display_name)

    async def _legacy_save(
        self,
        week_number: int,
        user_id: str,
        picks: dict[str, ConfidencePick],
        display_name: str,
    ) -> SubmitResult:
        if not self._legacy_available():
            error = CircuitOpenError("legacy circuit open")
            self.monitor.track_error(error, "save_user_picks")
            return SubmitResult(success=False, error=str(error), error_kind=error.kind)

        try:
            result = await self.legacy.save_user_picks(week_number, user_id, picks, display_name)
        except Exception as e:
            handled = await self.error_handler.handle_error(
                e,
                PICKS_CONTEXT,
                LEGACY,
                retry=lambda: self.legacy.save_user_picks(week_number, user_id, picks, display_name),
            )
            recovered = handled.get("data")
            self.monitor.track_error(e, "save_user_picks", recovered=isinstance(recovered, SubmitResult))
            if isinstance(recovered, SubmitResult):
                await self._flag_unified_week(week_number)
                return recovered
            # Writes never resolve to an empty "success"
            return SubmitResult(success=False, error=str(e), error_kind=classify(e))

        self.error_handler.record_success(LEGACY)
        await self._flag_unified_week(week_number)
        return result

    async def _flag_unified_week(self, week_number: int) -> None:
        """An existing unified week document does not hold legacy-only saves yet"""
        try:
            await self.manager.mark_week_for_migration(week_number)
        except Exception as e:
            self.manager.invalidate_cache(week_number)
            logger.warning(f"⚠️ Could not flag week {week_number} for migration: {e}")

    async def load_user_picks(self, week_number: int, user_id: str) -> dict[str, ConfidencePick]:
        try:
            return await self.manager.load_user_picks(week_number, user_id)
        except Exception as e:
            handled = await self.error_handler.handle_error(
                e,
                PICKS_CONTEXT,
                UNIFIED,
                retry=lambda: self.manager.load_user_picks(week_number, user_id),
            )
            self.monitor.track_error(e, "load_user_picks", recovered="recovery_type" in handled)
            return handled.get("data") or {}

    # ============================================
    # 📌 MODE & STATUS
    # ============================================

    def enable_unified_mode(self) -> None:
        self.mode = UNIFIED
        logger.info("🚀 Switched to unified mode")

    def enable_legacy_mode(self) -> None:
        self.mode = LEGACY
        logger.warning("⚠️ Switched to legacy mode")

    def set_mode(self, mode: str) -> None:
        if mode == UNIFIED:
            self.enable_unified_mode()
        elif mode == LEGACY:
            self.enable_legacy_mode()
        else:
            raise ValueError(f"Unknown integration mode: {mode}")

    def status(self) -> dict:
        return {
            "mode": self.mode,
            "unified_available": self.mode == UNIFIED and not self.error_handler.is_circuit_open(UNIFIED),
            "current_week": self.manager.current_week,
            "metrics": self.manager.get_metrics(),
        }

    async def health_check(self) -> dict:
        unified = await self.manager.health_check()
        errors = self.error_handler.health_check()
        healthy = unified["status"] == "healthy" and errors["status"] == "healthy"
        return {
            "integration": "healthy" if healthy else "degraded",
            "mode": self.mode,
            "unified": unified,
            "legacy": "circuit_open" if self.error_handler.is_circuit_open(LEGACY) else "available",
            "errors": errors,
            "performance": self.monitor.get_metrics(),
        }
