import pytest

from tests.fakes import (
    FakeActivityRepo,
    FakeClock,
    FakeContractorRepo,
    FakeEmailLogRepo,
    FakeOfferCodeRepo,
    FakeOpportunityRepo,
    FakeTaskRepo,
)


@pytest.fixture
def contractors():
    return FakeContractorRepo()


@pytest.fixture
def opportunities():
    return FakeOpportunityRepo()


@pytest.fixture
def email_logs():
    return FakeEmailLogRepo()


@pytest.fixture
def activities():
    return FakeActivityRepo()


@pytest.fixture
def tasks():
    return FakeTaskRepo()


@pytest.fixture
def offer_codes():
    return FakeOfferCodeRepo()


@pytest.fixture
def clock():
    return FakeClock()
