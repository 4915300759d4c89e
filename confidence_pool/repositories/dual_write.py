"""
Dual write of a pick submission.

One submission fans out to every registered sink: the unified week document
and the legacy per-user document. Retiring the legacy layout means dropping
LegacyUserPicksSink from DEFAULT_SINKS; callers only see DualPickWriter.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Mapping

from confidence_pool.core.errors import PartialWriteError
from confidence_pool.models import (
    ConfidencePick,
    LegacyPickDocument,
    WeekDocument,
    META_KEY,
)
from confidence_pool.repositories.confidence_repository import (
    ConfidencePaths,
    Reader,
    dump_document,
    parse_document,
)
from confidence_pool.repositories.document_store import DocumentStore, Transaction
from confidence_pool.services import scoring

logger = logging.getLogger(__name__)


class PickSubmission:
    """Everything a sink needs to render its document"""

    def __init__(
        self,
        week_number: int,
        user_id: str,
        picks: Mapping[str, ConfidencePick],
        display_name: str,
        submitted_at: datetime,
    ):
        self.week_number = week_number
        self.user_id = user_id
        self.picks = picks
        self.display_name = display_name
        self.submitted_at = submitted_at


class PickSink(ABC):
    name: str = "sink"

    @abstractmethod
    def path(self, paths: ConfidencePaths, submission: PickSubmission) -> str:
        ...

    @abstractmethod
    async def render(self, read: Reader, paths: ConfidencePaths, submission: PickSubmission) -> dict:
        """Builds the full document to write; may read the current one through `read`"""


class UnifiedWeekSink(PickSink):
    name = "unified"

    def path(self, paths, submission):
        return paths.week(submission.week_number)

    async def render(self, read, paths, submission):
        path = self.path(paths, submission)
        raw = await read(path)
        week = parse_document(WeekDocument, path, raw) if raw is not None else WeekDocument(
            week_number=submission.week_number
        )

        # A submission replaces the user's whole set of picks for the week
        user_entry: dict = {
            game_id: {
                "winning_team_choice": pick.winning_team_choice,
                "confidence_points": pick.confidence_points,
                "submitted_at": submission.submitted_at,
            }
            for game_id, pick in submission.picks.items()
        }
        user_entry[META_KEY] = {
            "display_name": submission.display_name,
            "user_id": submission.user_id,
            "submission_time": submission.submitted_at,
        }
        week.picks[submission.user_id] = user_entry

        # Scores only change when results do; re-rank against the stored results
        week.leaderboards.weekly = scoring.build_weekly_leaderboard(week.picks, week.game_results)
        week.stats = scoring.calculate_week_stats(week.picks, week.leaderboards.weekly)
        week.cache.last_updated = submission.submitted_at
        return dump_document(week)


class LegacyUserPicksSink(PickSink):
    name = "legacy"

    def path(self, paths, submission):
        return paths.legacy_picks(submission.week_number, submission.user_id)

    async def render(self, read, paths, submission):
        legacy = LegacyPickDocument(
            submission_time=submission.submitted_at,
            picks={
                game_id: {
                    "winning_team_choice": pick.winning_team_choice,
                    "confidence_points": pick.confidence_points,
                }
                for game_id, pick in submission.picks.items()
            },
        )
        return dump_document(legacy)


DEFAULT_SINKS: tuple[PickSink, ...] = (UnifiedWeekSink(), LegacyUserPicksSink())


class DualPickWriter:
    def __init__(self, store: DocumentStore, paths: ConfidencePaths, sinks: tuple[PickSink, ...] = DEFAULT_SINKS):
        self.store = store
        self.paths = paths
        self.sinks = sinks

    async def write_transactional(self, submission: PickSubmission) -> int:
        """
        All sinks in one transaction. The unified document is read inside the
        transaction so concurrent submitters cannot overwrite each other's picks.
        """

        async def body(txn: Transaction) -> int:
            rendered = [
                (sink.path(self.paths, submission), await sink.render(txn.get, self.paths, submission))
                for sink in self.sinks
            ]
            for path, data in rendered:
                txn.set(path, data)
            return len(rendered)

        return await self.store.run_transaction(body)

    async def write_sequential(self, submission: PickSubmission) -> int:
        """
        Sinks one after another, without atomicity.

        If a later sink fails the earlier writes stay in place; the error
        carries how many landed so the caller can report the inconsistency.
        """
        written = 0
        for sink in self.sinks:
            try:
                data = await sink.render(self.store.get, self.paths, submission)
                await self.store.set(sink.path(self.paths, submission), data)
            except Exception as e:
                logger.error(f"❌ Sequential write to {sink.name} sink failed after {written} writes: {e}")
                raise PartialWriteError(
                    f"{sink.name} write failed: {e}", writes_landed=written, cause=e
                ) from e
            written += 1
        return written
