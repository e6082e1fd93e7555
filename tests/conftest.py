import pytest

from fakes import FakeClock, FakeTransport, RecordingSleep, make_client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(transport, clock, sleep):
    return make_client(transport, clock, sleep)
