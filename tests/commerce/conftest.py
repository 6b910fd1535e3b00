import pytest
from protean.integrations.pytest import DomainFixture

from commerce.carrier import reset_carrier, set_carrier
from commerce.carrier.fake_adapter import FakeCarrier
from commerce.fraud import reset_fraud_scorer, set_fraud_scorer
from commerce.fraud.fake_adapter import FakeFraudScorer
from commerce.gateway import reset_gateway, set_gateway
from commerce.gateway.fake_adapter import FakeGateway


@pytest.fixture(scope="session")
def commerce_bed():
    from commerce.domain import commerce

    bed = DomainFixture(commerce)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(commerce_bed):
    with commerce_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()

        for _, broker in current_domain.brokers.items():
            broker._data_reset()

        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def carrier():
    fake = FakeCarrier()
    set_carrier(fake)
    yield fake
    reset_carrier()


@pytest.fixture(autouse=True)
def fraud_scorer():
    fake = FakeFraudScorer()
    set_fraud_scorer(fake)
    yield fake
    reset_fraud_scorer()
