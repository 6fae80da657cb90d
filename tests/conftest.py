import pytest
from mongomock_motor import AsyncMongoMockClient

from database import AccountKey, MongoStore
from ledger import BalanceLedger


class FakeClock:
    """Controllable stand-in for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    # mongomock has no multi-document transactions, so transfers take the two-step path
    store = MongoStore(transactions=False)
    store.use_client(AsyncMongoMockClient(), "test_economy")
    return store


@pytest.fixture
def ledger(store):
    return BalanceLedger(store)


@pytest.fixture
def alice():
    return AccountKey.of(111, 999)


@pytest.fixture
def bob():
    return AccountKey.of(222, 999)
