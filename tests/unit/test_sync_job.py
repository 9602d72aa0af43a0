import asyncio
from datetime import date

import pytest

from lead_engine.config import settings
from lead_engine.errors import ConfigurationError
from lead_engine.models.domain.contractor_domain import PipelineStage
from lead_engine.models.domain.opportunity_domain import Opportunity
from lead_engine.models.domain.sync_domain import CodeError, DateWindow, SyncKind, SyncStatus
from lead_engine.services.opportunity_cache import OpportunityCache
from lead_engine.services.sync_job import (
    ContractorTarget,
    OpportunityTarget,
    SyncJob,
    opportunity_codes,
    resolve_codes,
)
from tests.fakes import FakeContractorRepo, FakeSyncRunRepo, make_contractor

WINDOW = DateWindow(start=date(2026, 3, 1), end=date(2026, 3, 8))


def entity(i: int, email: str | None = None, cage: str | None = "1ABC2") -> dict:
    return {
        "entityRegistration": {
            "ueiSAM": f"UEI{i:09d}",
            "legalBusinessName": f"Contractor {i}",
            "cageCode": cage,
            "registrationDate": "2026-03-05",
        },
        "coreData": {"physicalAddress": {"stateOrProvinceCode": "MD"}},
        "assertions": {"naicsCode": [{"naicsCode": "541512", "naicsPrimary": "Y"}]},
        "pointsOfContact": {"governmentBusinessPOC": {"electronicAddress": email or f"bd{i}@contractor{i}.com"}},
    }


class FakeCursor:
    def __init__(self, records, error, max_records):
        self.records = records[:max_records]
        self.error = error
        self.fetched = 0

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self.records:
            self.fetched += 1
            yield record


class FakeRegistry:
    """code -> records, or code -> CodeError for a code whose fetch gives up immediately."""

    def __init__(self, pages: dict):
        self.pages = pages
        self.requested: list[tuple[str, int]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    def paginate(self, kind, code, window, max_records):
        self.requested.append((code, max_records))
        page = self.pages.get(code, [])
        if isinstance(page, CodeError):
            return FakeCursor([], page, max_records)
        return FakeCursor(page, None, max_records)


def failure(code: str) -> CodeError:
    return CodeError(code=code, kind="upstream_error", message="Registry server error (HTTP 503)")


def contractor_job(registry, contractors, opportunities, runs, **kwargs) -> SyncJob:
    return SyncJob(
        ContractorTarget(contractors, opportunities, write_concurrency=2),
        registry_factory=lambda: registry,
        runs=runs,
        max_failed_codes=3,
        **kwargs,
    )


@pytest.fixture
def runs():
    return FakeSyncRunRepo()


@pytest.mark.asyncio
async def test_two_runs_over_the_same_page_leave_ten_rows(contractors, opportunities, runs):
    registry = FakeRegistry({"541512": [entity(i) for i in range(10)]})
    job = contractor_job(registry, contractors, opportunities, runs)

    first = await job.run(["541512"], WINDOW, 100)
    second = await job.run(["541512"], WINDOW, 100)

    assert len(contractors.rows) == 10
    assert (first.new, first.updated) == (10, 0)
    assert (second.new, second.updated) == (0, 10)
    assert second.status is SyncStatus.SUCCESS
    assert [r.status for r in runs.rows] == [SyncStatus.SUCCESS, SyncStatus.SUCCESS]


@pytest.mark.asyncio
async def test_sync_never_touches_pipeline_fields(contractors, opportunities, runs):
    registry = FakeRegistry({"541512": [entity(1)]})
    job = contractor_job(registry, contractors, opportunities, runs)
    await job.run(["541512"], WINDOW, 100)
    (stored,) = contractors.rows.values()
    contractors.rows[stored.id] = stored.model_copy(
        update={"pipeline_stage": PipelineStage.UNSUBSCRIBED, "contact_attempts": 2}
    )

    await job.run(["541512"], WINDOW, 100)

    (stored,) = contractors.rows.values()
    assert stored.pipeline_stage is PipelineStage.UNSUBSCRIBED
    assert stored.contact_attempts == 2


@pytest.mark.asyncio
async def test_scores_use_active_opportunity_codes(contractors, opportunities, runs):
    registry = FakeRegistry({"541512": [entity(1)]})
    job = contractor_job(registry, contractors, opportunities, runs)

    plain = await job.run(["541512"], WINDOW, 100)
    opportunities.rows["n1"] = Opportunity(notice_id="n1", naics_code="541512")
    matched = await job.run(["541512"], WINDOW, 100)

    assert matched.average_score == plain.average_score + 20
    assert matched.active_codes_used == 1


@pytest.mark.asyncio
async def test_records_without_contact_or_cage_are_skipped(contractors, opportunities, runs):
    registry = FakeRegistry(
        {"541512": [entity(1), entity(2, email="not-an-email", cage=None), entity(3, email="x", cage="9Z9Z9")]}
    )

    summary = await contractor_job(registry, contractors, opportunities, runs).run(["541512"], WINDOW, 100)

    assert summary.fetched == 3
    assert summary.skipped == 1
    assert summary.new == 2
    kept_without_email = next(c for c in contractors.rows.values() if c.cage_code == "9Z9Z9")
    assert kept_without_email.email is None


@pytest.mark.asyncio
async def test_max_records_is_a_total_across_codes(contractors, opportunities, runs):
    registry = FakeRegistry({"541512": [entity(i) for i in range(5)], "541511": [entity(i) for i in range(5, 10)]})

    summary = await contractor_job(registry, contractors, opportunities, runs).run(["541512", "541511"], WINDOW, 7)

    assert summary.fetched == 7
    assert registry.requested == [("541512", 7), ("541511", 2)]


@pytest.mark.asyncio
async def test_failed_code_is_recorded_and_run_continues(contractors, opportunities, runs):
    registry = FakeRegistry({"236220": failure("236220"), "541512": [entity(1), entity(2)]})

    summary = await contractor_job(registry, contractors, opportunities, runs).run(["236220", "541512"], WINDOW, 100)

    assert summary.status is SyncStatus.PARTIAL
    assert [e.code for e in summary.errors] == ["236220"]
    assert summary.new == 2
    assert runs.rows[0].errors[0]["code"] == "236220"


@pytest.mark.asyncio
async def test_consecutive_code_failures_abort_as_connectivity(contractors, opportunities, runs):
    codes = ["541512", "541511", "541519", "541330", "236220"]
    registry = FakeRegistry({"541512": [entity(1)], **{c: failure(c) for c in codes[1:]}})

    summary = await contractor_job(registry, contractors, opportunities, runs).run(codes, WINDOW, 100)

    assert summary.status is SyncStatus.FAILED
    assert summary.error_kind == "connectivity"
    assert [code for code, _ in registry.requested] == codes[:4]
    # Rows fetched before the registry went away are still written
    assert len(contractors.rows) == 1
    assert runs.rows[0].status is SyncStatus.FAILED


@pytest.mark.asyncio
async def test_every_code_failing_is_a_failed_run(contractors, opportunities, runs):
    registry = FakeRegistry({"541512": failure("541512")})

    summary = await contractor_job(registry, contractors, opportunities, runs).run(["541512"], WINDOW, 100)

    assert summary.status is SyncStatus.FAILED
    assert summary.error_kind == "upstream_transient"


@pytest.mark.asyncio
async def test_missing_credentials_fail_the_run(contractors, opportunities, runs):
    def no_key():
        raise ConfigurationError("REGISTRY_API_KEY is not configured")

    job = SyncJob(ContractorTarget(contractors, opportunities), registry_factory=no_key, runs=runs)

    summary = await job.run(["541512"], WINDOW, 100)

    assert summary.status is SyncStatus.FAILED
    assert summary.error_kind == "configuration"
    assert summary.to_dict()["error"] == "REGISTRY_API_KEY is not configured"
    assert len(runs.rows) == 1


@pytest.mark.asyncio
async def test_stop_signal_ends_fetch_between_codes(contractors, opportunities, runs):
    stop_event = asyncio.Event()
    registry = FakeRegistry({"541512": [entity(1)], "541511": [entity(2)]})
    original = registry.paginate

    def paginate_then_stop(kind, code, window, max_records):
        stop_event.set()
        return original(kind, code, window, max_records)

    registry.paginate = paginate_then_stop
    job = contractor_job(registry, contractors, opportunities, runs, stop_event=stop_event)

    summary = await job.run(["541512", "541511"], WINDOW, 100)

    assert summary.status is SyncStatus.STOPPED
    assert len(contractors.rows) == 1
    assert [code for code, _ in registry.requested] == ["541512"]


@pytest.mark.asyncio
async def test_opportunity_refresh_replaces_active_set(opportunities, runs):
    opportunities.rows["old"] = Opportunity(notice_id="old", naics_code="541512")
    registry = FakeRegistry({"541512": [{"noticeId": "new1", "naicsCode": "541512"}, {"noticeId": "new2"}]})
    job = SyncJob(
        OpportunityTarget(OpportunityCache(opportunities, write_concurrency=2)),
        registry_factory=lambda: registry,
        runs=runs,
    )

    summary = await job.run(["541512"], WINDOW, 100)

    assert summary.kind is SyncKind.OPPORTUNITIES
    assert summary.new == 2
    assert opportunities.rows["old"].active is False
    assert opportunities.rows["new1"].active is True


@pytest.mark.asyncio
async def test_opportunity_refresh_with_every_code_failing_keeps_cache(opportunities, runs):
    opportunities.rows["old"] = Opportunity(notice_id="old", naics_code="541512")
    registry = FakeRegistry({"541512": failure("541512")})
    job = SyncJob(
        OpportunityTarget(OpportunityCache(opportunities)), registry_factory=lambda: registry, runs=runs
    )

    summary = await job.run(["541512"], WINDOW, 100)

    assert summary.status is SyncStatus.FAILED
    assert opportunities.deactivations == 0
    assert opportunities.rows["old"].active is True


@pytest.mark.asyncio
async def test_opportunity_codes_come_from_contractors():
    repo = FakeContractorRepo(make_contractor(naics_code="541512"), make_contractor(naics_code="236220"))

    assert await opportunity_codes(repo) == ["541512", "236220"]


@pytest.mark.asyncio
async def test_opportunity_codes_fall_back_to_configured_list():
    class BrokenRepo:
        @staticmethod
        async def distinct_naics_codes(limit):
            raise RuntimeError("db down")

    assert await opportunity_codes(BrokenRepo) == list(settings.CLASSIFICATION_CODES)


def test_resolve_codes_cleans_input():
    assert resolve_codes([" 541512 ", "", None]) == ["541512"]
    assert resolve_codes(None) == list(settings.CLASSIFICATION_CODES)
