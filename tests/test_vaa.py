"""Wormholescan lookups against a mocked HTTP session."""

import base64
import json
from unittest.mock import patch

import pytest
import requests
from requests import Response

from wormhole_transfer.chain import SequenceIdentifier, TransactionIdentifier
from wormhole_transfer.errors import AttestationTransportError
from wormhole_transfer.transfer import Network
from wormhole_transfer.vaa import (
    SignedVAA,
    create_wormholescan_session,
    decode_vaa,
    fetch_vaa,
    fetch_vaa_by_sequence,
    fetch_vaa_by_transaction,
    get_wormholescan_explorer_url,
)

VAA_BYTES = bytes.fromhex("01000000000100" + "ab" * 64)

SEQUENCE_ID = SequenceIdentifier(
    emitter_chain=30,
    emitter_address="0x86F55A04690fd7815A3D802bD587e83eA888B239",
    sequence=4321,
)

TX_ID = TransactionIdentifier(emitter_chain=30, transaction_hash="0x" + "12" * 32)


def make_response(status_code: int, payload=None, body: bytes | None = None) -> Response:
    response = Response()
    response.status_code = status_code
    response.reason = "OK" if status_code < 400 else "Error"
    if body is None:
        body = json.dumps(payload or {}).encode()
    response._content = body
    return response


@pytest.fixture()
def session():
    return create_wormholescan_session(Network.testnet)


def test_session_api_url():
    """Network selects the API URL, an explicit URL wins."""
    assert create_wormholescan_session(Network.testnet).api_url == "https://api.testnet.wormholescan.io"
    assert create_wormholescan_session(Network.mainnet).api_url == "https://api.wormholescan.io"
    assert create_wormholescan_session(Network.mainnet, api_url="http://localhost:8000").api_url == "http://localhost:8000"


def test_fetch_by_sequence(session):
    """Emitter is zero padded to 64 lowercase hex characters and the base64 payload decoded."""
    payload = {"data": {"sequence": "4321", "vaa": base64.b64encode(VAA_BYTES).decode()}}

    with patch.object(session, "get", return_value=make_response(200, payload)) as get:
        vaa = fetch_vaa_by_sequence(session, SEQUENCE_ID)

    url = get.call_args[0][0]
    assert url == "https://api.testnet.wormholescan.io/api/v1/vaas/30/00000000000000000000000086f55a04690fd7815a3d802bd587e83ea888b239/4321"
    assert isinstance(vaa, SignedVAA)
    assert vaa.vaa == VAA_BYTES
    assert vaa.identifier == SEQUENCE_ID


def test_fetch_by_sequence_not_found(session):
    """HTTP 404 means not yet signed."""
    with patch.object(session, "get", return_value=make_response(404)):
        assert fetch_vaa_by_sequence(session, SEQUENCE_ID) is None


def test_fetch_by_sequence_no_vaa_field(session):
    """A response without a VAA means not yet signed."""
    with patch.object(session, "get", return_value=make_response(200, {"data": {"sequence": "4321"}})):
        assert fetch_vaa_by_sequence(session, SEQUENCE_ID) is None


def test_fetch_server_error(session):
    """Other HTTP errors are transport errors."""
    with patch.object(session, "get", return_value=make_response(503)):
        with pytest.raises(AttestationTransportError, match="503"):
            fetch_vaa_by_sequence(session, SEQUENCE_ID)


def test_fetch_connection_error(session):
    """Network failures are transport errors."""
    with patch.object(session, "get", side_effect=requests.ConnectionError("connection refused")):
        with pytest.raises(AttestationTransportError, match="connection refused"):
            fetch_vaa_by_sequence(session, SEQUENCE_ID)


def test_fetch_invalid_json(session):
    """A garbled body is a transport error."""
    with patch.object(session, "get", return_value=make_response(200, body=b"<html>gateway</html>")):
        with pytest.raises(AttestationTransportError, match="invalid JSON"):
            fetch_vaa_by_sequence(session, SEQUENCE_ID)


@pytest.mark.parametrize("body", [b"[]", b'"maintenance"', b"null"])
def test_fetch_non_object_json(session, body):
    """A JSON body that is not an object is a transport error for both lookups."""
    with patch.object(session, "get", return_value=make_response(200, body=body)):
        with pytest.raises(AttestationTransportError, match="expected a JSON object"):
            fetch_vaa_by_sequence(session, SEQUENCE_ID)
        with pytest.raises(AttestationTransportError, match="expected a JSON object"):
            fetch_vaa_by_transaction(session, TX_ID)


def test_fetch_by_transaction(session):
    """Transaction lookups take the first VAA from the emitter chain."""
    payload = {
        "data": [
            {"emitterChain": 2, "vaa": base64.b64encode(b"\x02" * 16).decode()},
            {"emitterChain": 30, "vaa": base64.b64encode(VAA_BYTES).decode()},
        ]
    }

    with patch.object(session, "get", return_value=make_response(200, payload)) as get:
        vaa = fetch_vaa_by_transaction(session, TX_ID)

    assert get.call_args[0][0] == f"https://api.testnet.wormholescan.io/api/v1/vaas/?txHash={TX_ID.transaction_hash}"
    assert vaa.vaa == VAA_BYTES
    assert vaa.identifier == TX_ID


def test_fetch_by_transaction_adds_prefix(session):
    """Hash without ``0x`` is prefixed."""
    identifier = TransactionIdentifier(emitter_chain=30, transaction_hash="ab" * 32)
    with patch.object(session, "get", return_value=make_response(200, {"data": []})) as get:
        assert fetch_vaa_by_transaction(session, identifier) is None
    assert get.call_args[0][0].endswith("?txHash=0x" + "ab" * 32)


def test_fetch_dispatches_on_identifier(session):
    """:py:func:`fetch_vaa` picks the endpoint from the identifier type."""
    with patch.object(session, "get", return_value=make_response(404)) as get:
        fetch_vaa(session, SEQUENCE_ID)
        fetch_vaa(session, TX_ID)

    urls = [call[0][0] for call in get.call_args_list]
    assert urls[0].endswith("/4321")
    assert "?txHash=" in urls[1]


def test_decode_vaa():
    """Both base64 and ``0x`` hex payloads decode."""
    assert decode_vaa(base64.b64encode(VAA_BYTES).decode()) == VAA_BYTES
    assert decode_vaa("0x" + VAA_BYTES.hex()) == VAA_BYTES
    with pytest.raises(ValueError):
        decode_vaa("not a vaa!")


def test_signed_vaa_short_id():
    """Short id is the leading 42 characters of the hex form."""
    vaa = SignedVAA(vaa=bytes.fromhex("abc0" + "01" * 100))
    assert vaa.short_id.startswith("0xabc0")
    assert len(vaa.short_id) == 42
    assert "bytes" in repr(vaa)


def test_explorer_url():
    """Testnet explorer links carry the network parameter."""
    assert get_wormholescan_explorer_url(Network.testnet, "0xabc") == "https://wormholescan.io/#/tx/0xabc?network=Testnet"
    assert get_wormholescan_explorer_url(Network.mainnet, "0xabc") == "https://wormholescan.io/#/tx/0xabc"
