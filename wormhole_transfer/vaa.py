"""Wormholescan VAA lookups.

After ``transferTokens()`` is mined on the source chain, the Wormhole
guardians observe the ``LogMessagePublished`` event and, once enough of them
have signed, the signed VAA appears on Wormholescan. This module does
single lookups. Retrying is done by :py:mod:`wormhole_transfer.poller`.

Every lookup has three outcomes:

- :py:class:`SignedVAA`: the VAA is published
- ``None``: not yet available (HTTP 404 or no ``vaa`` field in the response)
- :py:class:`~wormhole_transfer.errors.AttestationTransportError`: network failure
  or any other HTTP status

Example::

    from wormhole_transfer.chain import SequenceIdentifier
    from wormhole_transfer.transfer import Network
    from wormhole_transfer.vaa import create_wormholescan_session, fetch_vaa_by_sequence

    session = create_wormholescan_session(Network.testnet)
    identifier = SequenceIdentifier(
        emitter_chain=30,
        emitter_address="0x86F55A04690fd7815A3D802bD587e83eA888B239",
        sequence=4321,
    )
    vaa = fetch_vaa_by_sequence(session, identifier)
    if vaa is not None:
        print("Got VAA", vaa.short_id)
"""

import base64
import binascii
import logging
from dataclasses import dataclass

import requests
from requests import Session
from requests.adapters import HTTPAdapter

from wormhole_transfer.chain import SequenceIdentifier, TransactionIdentifier, TransferIdentifier, emitter_address_hex
from wormhole_transfer.constants import ATTESTATION_ID_LENGTH, WORMHOLESCAN_API_URL, WORMHOLESCAN_TESTNET_API_URL
from wormhole_transfer.errors import AttestationTransportError
from wormhole_transfer.transfer import Network

logger = logging.getLogger(__name__)

#: HTTP 404 status code, VAA not yet signed or indexed
HTTP_NOT_FOUND = 404

#: Default HTTP timeout for a single lookup, seconds
DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass(slots=True, frozen=True)
class SignedVAA:
    """A signed VAA as published by the guardian network.

    We do not verify guardian signatures. The destination chain does that.
    """

    #: Raw VAA bytes, passed to the destination chain as is
    vaa: bytes

    #: What we looked it up with
    identifier: TransferIdentifier | None = None

    def hex(self) -> str:
        return "0x" + self.vaa.hex()

    @property
    def short_id(self) -> str:
        """Leading bytes of the VAA as hex, for logs and results."""
        return self.hex()[:ATTESTATION_ID_LENGTH]

    def __repr__(self) -> str:
        return f"<SignedVAA {self.short_id}... {len(self.vaa)} bytes>"


class WormholescanSession(Session):
    """A :py:class:`requests.Session` that carries the Wormholescan API URL.

    Use :py:func:`create_wormholescan_session` to create instances.
    """

    #: Wormholescan API base URL, e.g. ``https://api.wormholescan.io``
    api_url: str

    def __init__(self, api_url: str = WORMHOLESCAN_API_URL):
        super().__init__()
        self.api_url = api_url

    def __repr__(self) -> str:
        return f"<WormholescanSession api_url={self.api_url!r}>"


def get_wormholescan_api_url(network: Network) -> str:
    """Wormholescan base URL for a network."""
    if network == Network.mainnet:
        return WORMHOLESCAN_API_URL
    return WORMHOLESCAN_TESTNET_API_URL


def create_wormholescan_session(
    network: Network = Network.testnet,
    api_url: str | None = None,
    pool_maxsize: int = 32,
) -> WormholescanSession:
    """Create a session for Wormholescan lookups.

    No HTTP level retries are mounted, the attestation poller owns the retry budget.

    :param network:
        Selects the API URL when ``api_url`` is not given.

    :param api_url:
        Override the API URL, e.g. for a self-hosted Wormholescan.

    :param pool_maxsize:
        Connection pool size. Should be at least the number of parallel transfers.
    """
    session = WormholescanSession(api_url or get_wormholescan_api_url(network))
    adapter = HTTPAdapter(pool_connections=2, pool_maxsize=pool_maxsize)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def decode_vaa(encoded: str) -> bytes:
    """Decode a VAA from the API.

    Wormholescan serves base64. Hex with ``0x`` prefix is accepted too.

    :raise ValueError:
        Neither valid hex nor valid base64.
    """
    try:
        if encoded.startswith("0x"):
            return bytes.fromhex(encoded[2:])
        return base64.b64decode(encoded, validate=True)
    except (ValueError, binascii.Error) as e:
        raise ValueError(f"Cannot decode VAA payload: {encoded[:32]}...") from e


def _get_json(session: WormholescanSession, url: str, timeout: float) -> dict | None:
    """GET a Wormholescan URL.

    :return:
        Parsed JSON, or ``None`` on HTTP 404.
    """
    try:
        response = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise AttestationTransportError(f"Wormholescan request failed: {url}: {e}") from e

    if response.status_code == HTTP_NOT_FOUND:
        logger.debug("VAA not yet available (404): %s", url)
        return None

    if not response.ok:
        raise AttestationTransportError(f"Wormholescan API error {response.status_code} {response.reason}: {url}")

    try:
        data = response.json()
    except ValueError as e:
        raise AttestationTransportError(f"Wormholescan returned invalid JSON: {url}") from e

    if not isinstance(data, dict):
        raise AttestationTransportError(f"Wormholescan returned {type(data).__name__}, expected a JSON object: {url}")

    return data


def _extract_vaa(entry: dict | None) -> str | None:
    """Find the ``vaa`` field at the top level or under ``data``."""
    if not isinstance(entry, dict):
        return None
    if entry.get("vaa"):
        return entry["vaa"]
    data = entry.get("data")
    if isinstance(data, dict) and data.get("vaa"):
        return data["vaa"]
    return None


def _to_signed_vaa(encoded: str, identifier: TransferIdentifier, url: str) -> SignedVAA:
    try:
        vaa = decode_vaa(encoded)
    except ValueError as e:
        raise AttestationTransportError(f"Wormholescan returned an undecodable VAA: {url}") from e
    return SignedVAA(vaa=vaa, identifier=identifier)


def fetch_vaa_by_sequence(
    session: WormholescanSession,
    identifier: SequenceIdentifier,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> SignedVAA | None:
    """Look up a VAA by emitter chain, emitter address and sequence.

    ``GET /api/v1/vaas/{chain}/{emitter}/{sequence}`` where the emitter
    is 64 lowercase hex characters.

    :return:
        The VAA, or ``None`` if not yet published.

    :raise AttestationTransportError:
        Network failure or unexpected HTTP status.
    """
    emitter = emitter_address_hex(identifier.emitter_address)
    url = f"{session.api_url}/api/v1/vaas/{identifier.emitter_chain}/{emitter}/{identifier.sequence}"
    data = _get_json(session, url, timeout)
    encoded = _extract_vaa(data)
    if encoded is None:
        return None
    return _to_signed_vaa(encoded, identifier, url)


def fetch_vaa_by_transaction(
    session: WormholescanSession,
    identifier: TransactionIdentifier,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> SignedVAA | None:
    """Look up a VAA by source transaction hash.

    ``GET /api/v1/vaas/?txHash={hash}``. A transaction may emit several
    messages, we take the first one from the emitter chain.

    :return:
        The VAA, or ``None`` if not yet published.

    :raise AttestationTransportError:
        Network failure or unexpected HTTP status.
    """
    tx_hash = identifier.transaction_hash
    if not tx_hash.startswith("0x"):
        tx_hash = f"0x{tx_hash}"

    url = f"{session.api_url}/api/v1/vaas/?txHash={tx_hash}"
    data = _get_json(session, url, timeout)
    if data is None:
        return None

    entries = data.get("data")
    if isinstance(entries, dict):
        entries = [entries]
    elif not isinstance(entries, list):
        entries = [data]

    for entry in entries:
        emitter_chain = entry.get("emitterChain") if isinstance(entry, dict) else None
        if emitter_chain is not None and int(emitter_chain) != identifier.emitter_chain:
            continue
        encoded = _extract_vaa(entry)
        if encoded is not None:
            return _to_signed_vaa(encoded, identifier, url)

    return None


def fetch_vaa(session: WormholescanSession, identifier: TransferIdentifier, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> SignedVAA | None:
    """Look up a VAA by whichever identifier we have."""
    if isinstance(identifier, SequenceIdentifier):
        return fetch_vaa_by_sequence(session, identifier, timeout=timeout)
    return fetch_vaa_by_transaction(session, identifier, timeout=timeout)


def get_wormholescan_explorer_url(network: Network, transaction_hash: str) -> str:
    """Wormholescan explorer link for a source transaction."""
    suffix = "?network=Testnet" if network == Network.testnet else ""
    return f"https://wormholescan.io/#/tx/{transaction_hash}{suffix}"
