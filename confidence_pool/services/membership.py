"""
Pool membership and the confidence participation flag.

Rules:
- No members document at all: nothing is filtered
- User missing from the members document: excluded
- Member without a participation flag: included (they predate the flag)
"""

import logging
from typing import Optional

from confidence_pool.models import LeaderboardEntry, PoolMember
from confidence_pool.repositories.confidence_repository import ConfidenceRepository
from confidence_pool.services import scoring
from confidence_pool.services.cache import LeaderboardCache

logger = logging.getLogger(__name__)


class MembershipDirectory:
    """Members document reader, cached alongside the leaderboards"""

    def __init__(self, repository: ConfidenceRepository, cache: LeaderboardCache):
        self.repository = repository
        self.cache = cache
        self.reads = 0

    @property
    def cache_key(self) -> str:
        return f"confidence_{self.repository.paths.pool_id}_members"

    async def get_members(self, use_cache: bool = True) -> Optional[dict[str, PoolMember]]:
        if use_cache:
            cached = self.cache.get(self.cache_key)
            if cached is not None:
                return cached["members"]

        members = await self.repository.get_members()
        self.reads += 1
        if members is None:
            logger.warning("⚠️ No pool members document found, participation filter disabled")

        # Wrapped so an absent document is cached too
        self.cache.set(self.cache_key, {"members": members})
        return members

    async def eligible_user_ids(self) -> list[str]:
        """Members with confidence enabled, read fresh from the store"""
        members = await self.get_members(use_cache=False)
        if not members:
            return []
        return [user_id for user_id, member in members.items() if member.participation.confidence_enabled]

    async def display_names(self) -> dict[str, str]:
        members = await self.get_members()
        if not members:
            return {}
        return {user_id: member.display_name for user_id, member in members.items()}

    async def filter_entries(self, entries: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
        members = await self.get_members()
        return filter_participating(entries, members)

    def clear(self) -> None:
        self.cache.delete(self.cache_key)


def is_participating(user_id: str, members: Optional[dict[str, PoolMember]]) -> bool:
    if members is None:
        return True
    member = members.get(user_id)
    if member is None:
        return False
    return member.participation.confidence_enabled


def filter_participating(
    entries: list[LeaderboardEntry],
    members: Optional[dict[str, PoolMember]],
) -> list[LeaderboardEntry]:
    """Drops opted-out users and re-ranks the rest"""
    kept = [entry for entry in entries if is_participating(entry.user_id, members)]
    if len(kept) == len(entries):
        return entries
    return scoring.rank_entries([(e.user_id, e.display_name, e.score) for e in kept])
