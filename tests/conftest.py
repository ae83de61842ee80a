from decimal import Decimal

import pytest

from core.identity import IdentityResolver
from core.ledger import LedgerRecorder
from fakes import FakeDatastore, FakeExecutor, FakeReader, profile


@pytest.fixture
def store():
    return FakeDatastore(profiles=[
        profile("carol", "carol", tag="carolpay"),
        profile("alice", "alice"),
        profile("bob", "bob", tag="bobby"),
        profile("dave", "dave", tempo="0xdavetempo", wallet="0xdavewallet"),
    ])


@pytest.fixture
def reader():
    return FakeReader()


@pytest.fixture
def executor():
    return FakeExecutor(balances={"0xcarol": Decimal("100")})


@pytest.fixture
def resolver(store):
    return IdentityResolver(store)


@pytest.fixture
def ledger(store):
    return LedgerRecorder(store, worker_id="test-worker")
