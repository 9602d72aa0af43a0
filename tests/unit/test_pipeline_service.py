from datetime import timedelta

import pytest

from lead_engine.models.domain.campaign_domain import ActivityType, CampaignSend, EmailStatus, OfferCode
from lead_engine.models.domain.contractor_domain import PipelineStage, Priority
from lead_engine.pipeline.state_machine import PipelineEvent
from lead_engine.services.pipeline_service import (
    ContractorNotFoundError,
    PipelineService,
    StageConflictError,
)
from tests.fakes import NOW, make_contractor


@pytest.fixture
def service(contractors, activities, email_logs, offer_codes):
    return PipelineService(
        contractors, activities, email_logs, offer_codes, dedupe_window_hours=24, trial_days=14, max_attempts=3
    )


@pytest.mark.asyncio
async def test_second_open_same_day_does_not_advance_again(service, contractors, activities):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.NEW))

    first = await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW)
    second = await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW + timedelta(hours=2))

    assert first.stage is PipelineStage.CONTACTED
    assert second.duplicate is True
    stored = await contractors.get(contractor.id)
    assert stored.pipeline_stage is PipelineStage.CONTACTED
    assert stored.score == 45
    assert len(activities.of_type(ActivityType.EMAIL_OPENED)) == 1
    assert len(activities.of_type(ActivityType.STAGE_CHANGED)) == 1


@pytest.mark.asyncio
async def test_open_next_day_advances_again(service, contractors):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.NEW))

    await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW)
    result = await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW + timedelta(days=1))

    assert result.stage is PipelineStage.ENGAGED


@pytest.mark.asyncio
async def test_click_on_contacted_goes_hot_with_capped_score(service, contractors):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.CONTACTED, score=95))

    result = await service.apply(contractor.id, PipelineEvent.CLICK, now=NOW)

    assert result.stage is PipelineStage.HOT
    assert result.score == 100
    assert (await contractors.get(contractor.id)).priority is Priority.HIGH


@pytest.mark.asyncio
async def test_failed_write_releases_dedupe_claim(service, contractors, activities):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.NEW))
    contractors.fail_transitions = 1

    with pytest.raises(RuntimeError):
        await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW)

    assert len(activities.released) == 1
    retried = await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW)
    assert retried.duplicate is False
    assert retried.stage is PipelineStage.CONTACTED


@pytest.mark.asyncio
async def test_version_miss_is_reapplied_against_latest_row(service, contractors):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.NEW))
    original = contractors.apply_transition
    calls = {"n": 0}

    async def racing_apply(contractor_id, expected_version, changes):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another writer bumps the row between our read and write
            await contractors.record_contact(contractor_id, NOW)
        return await original(contractor_id, expected_version, changes)

    contractors.apply_transition = racing_apply

    result = await service.apply(contractor.id, PipelineEvent.OPEN, now=NOW)

    assert calls["n"] == 2
    assert result.stage is PipelineStage.CONTACTED
    assert (await contractors.get(contractor.id)).contact_attempts == 1


@pytest.mark.asyncio
async def test_persistent_version_miss_raises_conflict(service, contractors):
    contractor = contractors.add(make_contractor())

    async def always_stale(contractor_id, expected_version, changes):
        return None

    contractors.apply_transition = always_stale

    with pytest.raises(StageConflictError):
        await service.apply(contractor.id, PipelineEvent.CLICK, now=NOW)


@pytest.mark.asyncio
async def test_unknown_contractor_raises_before_claiming(service, activities):
    with pytest.raises(ContractorNotFoundError):
        await service.apply("5f0c3a52-0000-4000-8000-000000000000", PipelineEvent.CLICK, now=NOW)

    assert activities.rows == []
    assert activities.keys == set()
    assert activities.released == []


@pytest.mark.asyncio
async def test_signup_redeems_offer_code_once_per_conversion(service, contractors, offer_codes):
    offer_codes.rows["GOVCON50"] = OfferCode(id="o1", code="GOVCON50", max_usage=10)
    contractor = contractors.add(make_contractor(email="owner@firm.com"))

    first = await service.signup(email="Owner@Firm.com", offer_code="govcon50", now=NOW)
    again = await service.signup(contractor_id=contractor.id, offer_code="GOVCON50", now=NOW + timedelta(days=2))

    assert first.stage is PipelineStage.CONVERTED
    assert first.offer_code_redeemed is True
    assert again.offer_code_redeemed is False
    assert offer_codes.rows["GOVCON50"].usage_count == 1
    stored = await contractors.get(contractor.id)
    assert stored.score == 100
    assert stored.offer_code == "GOVCON50"
    assert stored.trial_end == NOW + timedelta(days=14)


@pytest.mark.asyncio
async def test_signup_with_exhausted_code_still_converts(service, contractors, offer_codes):
    offer_codes.rows["FULL"] = OfferCode(id="o2", code="FULL", max_usage=1, usage_count=1)
    contractor = contractors.add(make_contractor())

    result = await service.signup(contractor_id=contractor.id, offer_code="FULL", now=NOW)

    assert result.stage is PipelineStage.CONVERTED
    assert result.offer_code_redeemed is False


@pytest.mark.asyncio
async def test_unsubscribe_is_terminal_and_advances_email_log(service, contractors, email_logs):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.HOT))
    await email_logs.create(
        CampaignSend(id="m1", contractor_id=contractor.id, subject="s", body="b", status=EmailStatus.OPENED)
    )

    result = await service.unsubscribe(contractor_id=contractor.id, message_id="m1", now=NOW)
    later_click = await service.apply(contractor.id, PipelineEvent.CLICK, now=NOW + timedelta(days=1))

    assert result.stage is PipelineStage.UNSUBSCRIBED
    assert later_click.stage is PipelineStage.UNSUBSCRIBED
    assert later_click.stage_changed is False
    assert email_logs.rows["m1"].status is EmailStatus.UNSUBSCRIBED


@pytest.mark.asyncio
async def test_open_does_not_move_email_log_backward(service, contractors, email_logs):
    contractor = contractors.add(make_contractor())
    await email_logs.create(
        CampaignSend(id="m2", contractor_id=contractor.id, subject="s", body="b", status=EmailStatus.CLICKED)
    )

    await service.apply(contractor.id, PipelineEvent.OPEN, message_id="m2", now=NOW)

    assert email_logs.rows["m2"].status is EmailStatus.CLICKED


@pytest.mark.asyncio
async def test_signup_requires_an_identifier(service):
    with pytest.raises(ValueError):
        await service.signup(now=NOW)


@pytest.mark.asyncio
async def test_unsubscribe_after_same_day_resignup_sticks(service, contractors, activities):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.HOT))

    await service.unsubscribe(contractor_id=contractor.id, now=NOW)
    resigned = await service.signup(contractor_id=contractor.id, now=NOW + timedelta(minutes=5))
    final = await service.unsubscribe(contractor_id=contractor.id, now=NOW + timedelta(minutes=10))

    assert resigned.stage is PipelineStage.CONVERTED
    assert final.duplicate is False
    assert final.stage is PipelineStage.UNSUBSCRIBED
    assert (await contractors.get(contractor.id)).pipeline_stage is PipelineStage.UNSUBSCRIBED
    assert len(activities.of_type(ActivityType.UNSUBSCRIBED)) == 2


@pytest.mark.asyncio
async def test_second_resignup_in_the_same_window_converts_again(service, contractors):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.UNSUBSCRIBED))

    await service.signup(contractor_id=contractor.id, now=NOW)
    await service.unsubscribe(contractor_id=contractor.id, now=NOW + timedelta(minutes=1))
    again = await service.signup(contractor_id=contractor.id, now=NOW + timedelta(minutes=2))

    assert again.duplicate is False
    assert again.stage is PipelineStage.CONVERTED


@pytest.mark.asyncio
async def test_duplicate_signup_delivery_is_ignored(service, contractors, activities):
    contractor = contractors.add(make_contractor())

    await service.signup(contractor_id=contractor.id, now=NOW)
    repeat = await service.signup(contractor_id=contractor.id, now=NOW + timedelta(hours=1))

    assert repeat.duplicate is True
    assert len(activities.of_type(ActivityType.SIGNED_UP)) == 1


@pytest.mark.asyncio
async def test_repeated_unsubscribe_is_a_quiet_no_op(service, contractors, activities):
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.ENGAGED))

    await service.unsubscribe(contractor_id=contractor.id, now=NOW)
    repeat = await service.unsubscribe(contractor_id=contractor.id, now=NOW + timedelta(minutes=1))

    assert repeat.duplicate is False
    assert repeat.stage_changed is False
    assert len(activities.of_type(ActivityType.UNSUBSCRIBED)) == 1
    assert len(activities.of_type(ActivityType.STAGE_CHANGED)) == 1


@pytest.mark.asyncio
async def test_signup_with_message_and_offer_code_logs_the_transition(service, contractors, offer_codes):
    offer_codes.rows["TRIAL30"] = OfferCode(id="o3", code="TRIAL30", max_usage=5)
    contractor = contractors.add(make_contractor(pipeline_stage=PipelineStage.HOT))

    result = await service.apply(
        contractor.id, PipelineEvent.SIGNUP, message_id="m9", offer_code="trial30", now=NOW
    )

    assert result.stage_changed is True
    assert result.offer_code_redeemed is True
    assert offer_codes.rows["TRIAL30"].usage_count == 1
