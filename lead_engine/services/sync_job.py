"""
Registry sync job, parameterized by target (contractors or opportunities).

A run has two phases:

fetch    Classification codes are paged one after another through a single
         RegistryClient (upstream calls are never parallel). The stop signal
         is checked between codes. A code that fails is recorded as a
         per-code error and the run moves on; REGISTRY_MAX_FAILED_CODES codes
         in a row failing with nothing fetched means the registry is
         unreachable and the fetch phase ends with a connectivity error.
         Records are mapped and de-duplicated by key as they arrive.

persist  The target writes what was fetched. Per-record writes run with
         bounded concurrency and are never interrupted by the stop signal,
         so a stopped run never leaves a half-applied upsert.

A SyncRunRecord is written at the end of every run, whatever the outcome.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from lead_engine.config import settings
from lead_engine.errors import ConfigurationError, ConnectivityError, LeadEngineError
from lead_engine.infrastructure.observability.logging import get_logger, log_job_summary
from lead_engine.models.domain.contractor_domain import ContractorSnapshot
from lead_engine.models.domain.opportunity_domain import Opportunity
from lead_engine.models.domain.sync_domain import (
    DateWindow,
    SyncKind,
    SyncRunRecord,
    SyncStatus,
    SyncSummary,
)
from lead_engine.registry.client import RecordKind, RegistryClient
from lead_engine.registry.records import entity_to_snapshot, record_to_opportunity
from lead_engine.repositories.contractor_repository import ContractorRepository
from lead_engine.repositories.opportunity_repository import OpportunityRepository
from lead_engine.repositories.sync_run_repository import SyncRunRepository
from lead_engine.scoring.engine import is_parseable_email, score_breakdown
from lead_engine.services.opportunity_cache import ActiveCodeLookup, OpportunityCache

logger = get_logger(__name__)


class SyncTarget:
    """Strategy for one kind of registry record."""

    kind: SyncKind
    record_kind: RecordKind

    def map_record(self, raw: Any, synced_at: datetime) -> Any | None:
        """Domain record, or None to drop the raw record."""
        raise NotImplementedError

    def key(self, record: Any) -> str:
        raise NotImplementedError

    async def persist(self, records: list, summary: SyncSummary, all_codes_failed: bool) -> None:
        raise NotImplementedError


class ContractorTarget(SyncTarget):
    """
    Upsert contractors by UEI and re-score every one of them.

    A record is kept when it has a UEI and either a parseable email or a
    CAGE code. Stage, trial and contact fields are never written here.
    """

    kind = SyncKind.CONTRACTORS
    record_kind = RecordKind.ENTITIES

    def __init__(
        self,
        contractors=ContractorRepository,
        opportunities=OpportunityRepository,
        *,
        write_concurrency: int | None = None,
    ):
        self.contractors = contractors
        self.opportunities = opportunities
        self.write_concurrency = write_concurrency or settings.DB_WRITE_CONCURRENCY

    def map_record(self, raw: Any, synced_at: datetime) -> ContractorSnapshot | None:
        snapshot = entity_to_snapshot(raw)
        if snapshot is None:
            return None
        if not is_parseable_email(snapshot.email):
            snapshot.email = None
        if snapshot.email is None and not snapshot.cage_code:
            return None
        return snapshot

    def key(self, record: ContractorSnapshot) -> str:
        return record.uei_number

    async def persist(self, records: list[ContractorSnapshot], summary: SyncSummary, all_codes_failed: bool) -> None:
        as_of = datetime.now(UTC)
        lookup = ActiveCodeLookup(self.opportunities)
        semaphore = asyncio.Semaphore(self.write_concurrency)
        scores: list[int] = []

        async def write(snapshot: ContractorSnapshot) -> None:
            async with semaphore:
                try:
                    codes = await lookup.codes_for(snapshot.naics_code)
                    breakdown = score_breakdown(snapshot, codes, as_of)
                    _, created = await self.contractors.upsert_snapshot(
                        snapshot, breakdown.total, breakdown.priority, as_of
                    )
                except Exception as e:
                    summary.failed += 1
                    logger.error("Contractor upsert failed", uei=snapshot.uei_number, error=str(e))
                    return
                scores.append(breakdown.total)
                if created:
                    summary.new += 1
                else:
                    summary.updated += 1

        await asyncio.gather(*(write(s) for s in records))
        summary.active_codes_used = lookup.distinct_codes
        if scores:
            summary.average_score = round(sum(scores) / len(scores))


class OpportunityTarget(SyncTarget):
    kind = SyncKind.OPPORTUNITIES
    record_kind = RecordKind.OPPORTUNITIES

    def __init__(self, cache: OpportunityCache | None = None):
        self.cache = cache or OpportunityCache()

    def map_record(self, raw: Any, synced_at: datetime) -> Opportunity | None:
        return record_to_opportunity(raw, synced_at)

    def key(self, record: Opportunity) -> str:
        return record.notice_id

    async def persist(self, records: list[Opportunity], summary: SyncSummary, all_codes_failed: bool) -> None:
        if not records and (all_codes_failed or summary.status is SyncStatus.STOPPED):
            logger.warning(
                "Nothing fetched from a failed or stopped run, cached opportunities left untouched",
                status=summary.status.value,
            )
            return
        counts = await self.cache.replace_active(records)
        summary.new += counts["new"]
        summary.updated += counts["updated"]
        summary.failed += counts["failed"]


class SyncJob:
    def __init__(
        self,
        target: SyncTarget,
        *,
        registry_factory: Callable[[], RegistryClient] = RegistryClient,
        runs=SyncRunRepository,
        stop_event: asyncio.Event | None = None,
        max_failed_codes: int | None = None,
    ):
        self.target = target
        self.registry_factory = registry_factory
        self.runs = runs
        self.stop_event = stop_event or asyncio.Event()
        self.max_failed_codes = max_failed_codes or settings.REGISTRY_MAX_FAILED_CODES

    def request_stop(self) -> None:
        self.stop_event.set()

    async def run(self, codes: list[str], window: DateWindow, max_records: int) -> SyncSummary:
        """
        Run one sync. Never raises for upstream or per-record failures; the
        outcome is carried on the returned summary (status, error, error_kind).
        """
        started = time.monotonic()
        summary = SyncSummary(kind=self.target.kind, window=window)
        logger.info(
            "Sync run starting",
            kind=self.target.kind.value,
            codes=len(codes),
            date_from=window.start.isoformat(),
            date_to=window.end.isoformat(),
            max_records=max_records,
        )

        records: dict[str, Any] = {}
        all_codes_failed = False
        try:
            all_codes_failed = await self._fetch(codes, window, max_records, summary, records)
            await self.target.persist(list(records.values()), summary, all_codes_failed)
        except ConfigurationError as e:
            self._fail(summary, e)
        except ConnectivityError as e:
            self._fail(summary, e)
            # Whatever arrived before the registry went away is still written
            try:
                await self.target.persist(list(records.values()), summary, True)
            except Exception as persist_error:
                logger.error("Persist after connectivity failure failed", error=str(persist_error))
        except LeadEngineError as e:
            self._fail(summary, e)
        except Exception as e:
            logger.exception("Sync run crashed", kind=self.target.kind.value)
            summary.status = SyncStatus.FAILED
            summary.error = f"{type(e).__name__}: {e}"
            summary.error_kind = "internal"

        if summary.status is SyncStatus.SUCCESS:
            if all_codes_failed:
                summary.status = SyncStatus.FAILED
                summary.error = "Every classification code failed"
                summary.error_kind = "upstream_transient"
            elif summary.errors or summary.failed:
                summary.status = SyncStatus.PARTIAL

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        await self._record_run(summary)
        log_job_summary(f"{self.target.kind.value}_sync", summary.to_dict(), summary.duration_ms)
        return summary

    async def _fetch(
        self,
        codes: list[str],
        window: DateWindow,
        max_records: int,
        summary: SyncSummary,
        records: dict[str, Any],
    ) -> bool:
        """Fetch phase. Returns True when every attempted code failed."""
        synced_at = datetime.now(UTC)
        failed_in_a_row = 0
        attempted = failed = 0

        async with self.registry_factory() as registry:
            for code in codes:
                if self.stop_event.is_set():
                    summary.status = SyncStatus.STOPPED
                    logger.info("Sync stop requested, ending fetch", kind=self.target.kind.value, code=code)
                    break
                remaining = max_records - summary.fetched
                if remaining <= 0:
                    break

                attempted += 1
                cursor = registry.paginate(self.target.record_kind, code, window, remaining)
                async for raw in cursor:
                    summary.fetched += 1
                    record = self.target.map_record(raw, synced_at)
                    if record is None:
                        summary.skipped += 1
                        continue
                    records[self.target.key(record)] = record

                if cursor.error is None:
                    failed_in_a_row = 0
                    continue

                failed += 1
                summary.errors.append(cursor.error)
                failed_in_a_row = failed_in_a_row + 1 if cursor.fetched == 0 else 0
                if failed_in_a_row >= self.max_failed_codes:
                    raise ConnectivityError(
                        f"Registry unavailable: {failed_in_a_row} classification codes failed in a row"
                    )

        return attempted > 0 and failed == attempted

    def _fail(self, summary: SyncSummary, error: LeadEngineError) -> None:
        summary.status = SyncStatus.FAILED
        summary.error = str(error)
        summary.error_kind = error.kind
        logger.error("Sync run failed", kind=self.target.kind.value, error=str(error), error_kind=error.kind)

    async def _record_run(self, summary: SyncSummary) -> None:
        try:
            await self.runs.create(SyncRunRecord.from_summary(summary))
        except Exception as e:
            logger.error("Failed to write sync run record", kind=summary.kind.value, error=str(e))


def resolve_codes(codes: list[str] | None) -> list[str]:
    cleaned = [c.strip() for c in (codes or []) if c and c.strip()]
    return cleaned or list(settings.CLASSIFICATION_CODES)


async def sync_contractors(
    window: DateWindow | None = None,
    max_records: int | None = None,
    codes: list[str] | None = None,
    *,
    stop_event: asyncio.Event | None = None,
) -> SyncSummary:
    window = window or DateWindow.last_days(settings.CONTRACTOR_SYNC_DAYS)
    max_records = min(max_records or settings.CONTRACTOR_SYNC_MAX_RECORDS, settings.CONTRACTOR_SYNC_RECORD_CEILING)
    job = SyncJob(ContractorTarget(), stop_event=stop_event)
    return await job.run(resolve_codes(codes), window, max_records)


async def opportunity_codes(contractors=ContractorRepository) -> list[str]:
    """Classification codes held by contractors in the pipeline, else the configured list."""
    try:
        codes = await contractors.distinct_naics_codes(settings.OPPORTUNITY_MAX_CODES)
    except Exception as e:
        logger.warning("Could not load contractor classification codes, using defaults", error=str(e))
        codes = []
    return resolve_codes(codes)


async def refresh_opportunities(
    codes: list[str] | None = None,
    window: DateWindow | None = None,
    max_records: int | None = None,
    *,
    stop_event: asyncio.Event | None = None,
) -> SyncSummary:
    window = window or DateWindow.last_days(settings.OPPORTUNITY_LOOKBACK_DAYS)
    max_records = max_records or settings.OPPORTUNITY_MAX_RECORDS
    codes = resolve_codes(codes) if codes else await opportunity_codes()
    job = SyncJob(OpportunityTarget(), stop_event=stop_event)
    return await job.run(codes, window, max_records)
