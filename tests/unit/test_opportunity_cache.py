import pytest

from lead_engine.models.domain.opportunity_domain import Opportunity
from lead_engine.services.opportunity_cache import ActiveCodeLookup, OpportunityCache


@pytest.mark.asyncio
async def test_refresh_with_zero_records_keeps_rows_inactive(opportunities):
    opportunities.rows["a"] = Opportunity(notice_id="a", naics_code="541512")
    cache = OpportunityCache(opportunities, write_concurrency=2)

    counts = await cache.replace_active([])

    assert counts == {"deactivated": 1, "new": 0, "updated": 0, "failed": 0}
    assert opportunities.rows["a"].active is False


@pytest.mark.asyncio
async def test_refresh_upserts_and_reactivates(opportunities):
    opportunities.rows["a"] = Opportunity(notice_id="a", naics_code="541512")
    opportunities.rows["b"] = Opportunity(notice_id="b", naics_code="236220")
    cache = OpportunityCache(opportunities, write_concurrency=2)

    counts = await cache.replace_active([Opportunity(notice_id="a"), Opportunity(notice_id="c")])

    assert counts["new"] == 1
    assert counts["updated"] == 1
    assert {k for k, v in opportunities.rows.items() if v.active} == {"a", "c"}


@pytest.mark.asyncio
async def test_failed_upsert_is_counted_not_raised(opportunities):
    cache = OpportunityCache(opportunities, write_concurrency=1)
    original = opportunities.upsert

    async def flaky(opportunity):
        if opportunity.notice_id == "bad":
            raise RuntimeError("constraint violation")
        return await original(opportunity)

    opportunities.upsert = flaky

    counts = await cache.replace_active([Opportunity(notice_id="ok"), Opportunity(notice_id="bad")])

    assert counts["new"] == 1
    assert counts["failed"] == 1


@pytest.mark.asyncio
async def test_code_lookup_is_memoized_per_code():
    calls = []

    class Repo:
        @staticmethod
        async def matching_codes(naics_code):
            calls.append(naics_code)
            return ["541512", "541519"]

    lookup = ActiveCodeLookup(Repo)

    assert await lookup.codes_for("541512") == ("541512", "541519")
    assert await lookup.codes_for("541512") == ("541512", "541519")
    assert await lookup.codes_for("54") == ()
    assert await lookup.codes_for(None) == ()
    assert calls == ["541512"]
    assert lookup.distinct_codes == 2
