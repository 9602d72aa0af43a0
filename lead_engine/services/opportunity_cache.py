"""
Opportunity cache - the only read path for opportunities on user requests,
and the classification-code lookup used by scoring and targeting.

Refresh order:
1. every active row is flipped inactive (one statement, completes first)
2. fetched records are upserted by notice id with bounded write concurrency,
   each upsert forcing active = true and a fresh synced_at

Rows are never deleted. A refresh with nothing fetched leaves the previous
rows present but inactive; a refresh where every code failed upstream does
not touch the table at all.
"""

import asyncio
from datetime import datetime

from lead_engine.config import settings
from lead_engine.infrastructure.observability.logging import get_logger
from lead_engine.models.domain.opportunity_domain import Opportunity
from lead_engine.repositories.opportunity_repository import OpportunityRepository

logger = get_logger(__name__)


class ActiveCodeLookup:
    """
    Memoized "which active codes match this classification" lookup.

    One instance per sync run: each distinct classification code hits the
    indexed query once, no matter how many contractors share it.
    """

    def __init__(self, repository=OpportunityRepository):
        self.repository = repository
        self._cache: dict[str, tuple[str, ...]] = {}

    async def codes_for(self, naics_code: str | None) -> tuple[str, ...]:
        if not naics_code or len(naics_code) < 4:
            return ()
        if naics_code not in self._cache:
            self._cache[naics_code] = tuple(await self.repository.matching_codes(naics_code))
        return self._cache[naics_code]

    @property
    def distinct_codes(self) -> int:
        return len({code for codes in self._cache.values() for code in codes})


class OpportunityCache:
    def __init__(self, repository=OpportunityRepository, *, write_concurrency: int | None = None):
        self.repository = repository
        self.write_concurrency = write_concurrency or settings.DB_WRITE_CONCURRENCY

    async def replace_active(self, opportunities: list[Opportunity]) -> dict:
        """
        Deactivate everything, then upsert the fetched set.

        Returns:
            dict: {"deactivated", "new", "updated", "failed"}
        """
        deactivated = await self.repository.deactivate_all()
        if not opportunities:
            logger.warning(
                "Opportunity refresh fetched zero records, previous rows kept inactive",
                deactivated=deactivated,
            )
            return {"deactivated": deactivated, "new": 0, "updated": 0, "failed": 0}

        semaphore = asyncio.Semaphore(self.write_concurrency)
        counts = {"deactivated": deactivated, "new": 0, "updated": 0, "failed": 0}

        async def upsert(opportunity: Opportunity) -> None:
            async with semaphore:
                try:
                    created = await self.repository.upsert(opportunity)
                except Exception as e:
                    counts["failed"] += 1
                    logger.error(
                        "Opportunity upsert failed", notice_id=opportunity.notice_id, error=str(e)
                    )
                    return
                counts["new" if created else "updated"] += 1

        await asyncio.gather(*(upsert(o) for o in opportunities))
        logger.info("Opportunity cache refreshed", **counts)
        return counts

    async def best_match(self, naics_code: str) -> Opportunity | None:
        return await self.repository.best_match(naics_code)

    async def list_cached(
        self,
        classification: str | None = None,
        active_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Opportunity], int, datetime | None]:
        return await self.repository.list_cached(classification, active_only, limit, offset)


opportunity_cache = OpportunityCache()
