import pytest

from tests.fakes import RecordingEvent, StubDestinationClient, StubSourceClient
from wormhole_transfer.vaa import SignedVAA


@pytest.fixture()
def signed_vaa() -> SignedVAA:
    return SignedVAA(vaa=bytes.fromhex("abc0" + "01" * 100))


@pytest.fixture()
def source() -> StubSourceClient:
    return StubSourceClient()


@pytest.fixture()
def destination() -> StubDestinationClient:
    return StubDestinationClient()


@pytest.fixture()
def cancel_event() -> RecordingEvent:
    return RecordingEvent()
