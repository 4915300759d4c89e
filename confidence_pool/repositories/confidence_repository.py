"""
🏈 ConfidenceRepository - typed access to the confidence pool documents

Logical paths (parameterized by pool id and season):
    pools/{pool}/confidence/{season}/weeks/{week}                  unified week doc
    pools/{pool}/confidence/{season}/summary                       season summary
    pools/{pool}/picks/{season}/weeks/{week}/users/{user}          legacy per-user picks
    pools/{pool}/metadata/members                                  pool membership
"""

from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError

from confidence_pool.core.errors import CorruptDocumentError
from confidence_pool.models import (
    LegacyPickDocument,
    PoolMember,
    SeasonSummary,
    WeekDocument,
)
from confidence_pool.repositories.document_store import DocumentStore, Transaction

Reader = Callable[[str], Awaitable[Optional[dict]]]


class ConfidencePaths:
    def __init__(self, pool_id: str, season: str):
        self.pool_id = pool_id
        self.season = season

    def week(self, week_number: int) -> str:
        return f"pools/{self.pool_id}/confidence/{self.season}/weeks/{week_number}"

    def season_summary(self) -> str:
        return f"pools/{self.pool_id}/confidence/{self.season}/summary"

    def legacy_picks(self, week_number: int, user_id: str) -> str:
        return f"pools/{self.pool_id}/picks/{self.season}/weeks/{week_number}/users/{user_id}"

    def members(self) -> str:
        return f"pools/{self.pool_id}/metadata/members"


def parse_document(model: type[BaseModel], path: str, raw: dict):
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise CorruptDocumentError(path, str(e)) from e


def dump_document(doc: BaseModel) -> dict:
    return doc.model_dump(mode="python")


class ConfidenceRepository:
    """
    Week and summary reads take an optional `read` so the same parsing runs
    inside a transaction (pass `txn.get`); `stage_*` queue writes on one.
    """

    def __init__(self, store: DocumentStore, paths: ConfidencePaths):
        self.store = store
        self.paths = paths

    # ============================================
    # 📌 UNIFIED WEEK DOCUMENT
    # ============================================

    async def get_week(self, week_number: int, read: Optional[Reader] = None) -> Optional[WeekDocument]:
        path = self.paths.week(week_number)
        raw = await (read or self.store.get)(path)
        return parse_document(WeekDocument, path, raw) if raw is not None else None

    def stage_week(self, txn: Transaction, week: WeekDocument) -> None:
        txn.set(self.paths.week(week.week_number), dump_document(week))

    # ============================================
    # 📌 SEASON SUMMARY
    # ============================================

    async def get_season_summary(self, read: Optional[Reader] = None) -> Optional[SeasonSummary]:
        path = self.paths.season_summary()
        raw = await (read or self.store.get)(path)
        return parse_document(SeasonSummary, path, raw) if raw is not None else None

    def stage_season_summary(self, txn: Transaction, summary: SeasonSummary) -> None:
        txn.set(self.paths.season_summary(), dump_document(summary))

    # ============================================
    # 📌 LEGACY PER-USER PICKS
    # ============================================

    async def get_legacy_picks(self, week_number: int, user_id: str) -> Optional[LegacyPickDocument]:
        path = self.paths.legacy_picks(week_number, user_id)
        raw = await self.store.get(path)
        return parse_document(LegacyPickDocument, path, raw) if raw is not None else None

    async def save_legacy_picks(self, week_number: int, user_id: str, doc: LegacyPickDocument) -> None:
        await self.store.set(self.paths.legacy_picks(week_number, user_id), dump_document(doc))

    # ============================================
    # 📌 MEMBERSHIP
    # ============================================

    async def get_members(self) -> Optional[dict[str, PoolMember]]:
        """
        Returns {user_id: PoolMember}, or None when the members document is missing.

        A member entry that is not a mapping is treated as corrupt.
        """
        path = self.paths.members()
        raw = await self.store.get(path)
        if raw is None:
            return None
        members = {}
        for user_id, value in raw.items():
            if not isinstance(value, dict):
                raise CorruptDocumentError(path, f"member {user_id} is not a mapping")
            members[user_id] = parse_document(PoolMember, path, value)
        return members
