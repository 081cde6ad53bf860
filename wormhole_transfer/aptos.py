"""Aptos destination chain adapter for the Wormhole Token Bridge.

Completes a transfer by calling the Move entry function::

    {token_bridge}::complete_transfer::submit_vaa_entry<CoinType>(vaa: vector<u8>, fee_recipient: address)

or, when the recipient has not yet registered the coin store,
``submit_vaa_and_register_entry<CoinType>(vaa)`` signed by the recipient itself.

The `Aptos Python SDK <https://github.com/aptos-labs/aptos-python-sdk>`__ is
asyncio based. Our chain client interface is synchronous, so every call runs
its own event loop with a fresh REST client.

Completions from parallel transfers share the sponsor account. The account
sequence number is synced from the node once and then handed out locally
under a lock, so concurrent submissions never sign the same sequence number.
"""

import asyncio
import logging
import re
import threading

import httpx
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import ApiError, ClientConfig, RestClient
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import EntryFunction, TransactionArgument, TransactionPayload
from aptos_sdk.type_tag import StructTag, TypeTag

from wormhole_transfer.chain import DestinationChainClient, Finality
from wormhole_transfer.constants import APTOS_COMPLETE_TRANSFER_FUNCTION, APTOS_COMPLETE_TRANSFER_MODULE, WORMHOLE_CHAIN_APTOS
from wormhole_transfer.errors import ConfigurationError, DestinationTransactionFailed

logger = logging.getLogger(__name__)

#: AIP-80 prefix on exported Ed25519 private keys
APTOS_PRIVATE_KEY_PREFIX = "ed25519-priv-"

#: Entry function registering the coin store and completing in one go
APTOS_COMPLETE_AND_REGISTER_FUNCTION = "submit_vaa_and_register_entry"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def parse_aptos_private_key(key: str) -> str:
    """Normalise an Aptos Ed25519 private key.

    Accepts ``ed25519-priv-0x...``, ``0x...`` and bare hex. Longer keys,
    like an exported 64 byte keypair, are cut to the 32 byte seed.

    :return:
        ``0x`` followed by 64 hex characters.

    :raise ConfigurationError:
        Not hex, or shorter than 32 bytes.
    """
    value = key.strip()
    value = value.removeprefix(APTOS_PRIVATE_KEY_PREFIX)
    value = value.removeprefix("0x")

    if not _HEX_RE.match(value):
        raise ConfigurationError("Aptos private key is not hex")

    if len(value) < 64:
        raise ConfigurationError(f"Aptos private key too short: {len(value)} hex characters, expected 64")

    if len(value) > 64:
        logger.warning("Aptos private key has %d hex characters, using the first 64", len(value))
        value = value[:64]

    return "0x" + value


def normalise_aptos_address(address: str) -> str:
    """Long form Aptos address: ``0x`` followed by 64 lowercase hex characters.

    :raise ValueError:
        Not hex or longer than 32 bytes.
    """
    value = address.strip().lower().removeprefix("0x")
    if not value or not _HEX_RE.match(value) or len(value) > 64:
        raise ValueError(f"Not an Aptos address: {address!r}")
    return "0x" + value.rjust(64, "0")


def is_valid_coin_type(coin_type: str) -> bool:
    """Coin types look like ``0x<address>::<module>::<name>``."""
    return len(coin_type.split("::")) == 3


class AptosDestinationClient(DestinationChainClient):
    """Wormhole Token Bridge on Aptos.

    :param node_url:
        Aptos fullnode REST URL, e.g. ``https://fullnode.testnet.aptoslabs.com/v1``.

    :param account:
        Sponsor account paying for gas.

    :param token_bridge_address:
        Address the ``token_bridge`` Move package is published at.

    :param coin_type:
        Wrapped coin type the VAA releases, e.g. ``0x...::coin::T``.

    :param register_recipient:
        Use ``submit_vaa_and_register_entry``, registering the coin store
        for the signer. Only valid when the sponsor is the recipient.

    :param timeout:
        Seconds to wait for a transaction to commit.
    """

    def __init__(
        self,
        node_url: str,
        account: Account,
        token_bridge_address: str,
        coin_type: str,
        register_recipient: bool = False,
        timeout: float = 60.0,
    ):
        if not is_valid_coin_type(coin_type):
            raise ConfigurationError(f"Coin type must be in format 0x<address>::<module>::<name>, got {coin_type!r}")
        self.node_url = node_url
        self.account = account
        self.token_bridge_address = normalise_aptos_address(token_bridge_address)
        self.coin_type = coin_type
        self.register_recipient = register_recipient
        self.timeout = timeout
        self.chain_id = WORMHOLE_CHAIN_APTOS
        self.current_sequence_number: int | None = None
        self._lock = threading.Lock()

    def __repr__(self):
        return f"<AptosDestinationClient {self.address} bridge:{self.token_bridge_address}>"

    @staticmethod
    def from_private_key(node_url: str, private_key: str, token_bridge_address: str, coin_type: str, **kwargs) -> "AptosDestinationClient":
        """Create the client from a private key in any supported format, see :py:func:`parse_aptos_private_key`."""
        account = Account.load_key(parse_aptos_private_key(private_key))
        return AptosDestinationClient(node_url, account, token_bridge_address, coin_type, **kwargs)

    @property
    def address(self) -> str:
        return normalise_aptos_address(str(self.account.address()))

    def build_completion_payload(self, vaa: bytes, fee_recipient: str) -> TransactionPayload:
        """Build the ``complete_transfer`` entry function call."""
        type_args = [TypeTag(StructTag.from_str(self.coin_type))]
        module = f"{self.token_bridge_address}::{APTOS_COMPLETE_TRANSFER_MODULE}"

        if self.register_recipient:
            assert normalise_aptos_address(fee_recipient) == self.address, "Coin store registration only works when the sponsor receives the tokens"
            entry_function = EntryFunction.natural(
                module,
                APTOS_COMPLETE_AND_REGISTER_FUNCTION,
                type_args,
                [TransactionArgument(vaa, Serializer.to_bytes)],
            )
        else:
            entry_function = EntryFunction.natural(
                module,
                APTOS_COMPLETE_TRANSFER_FUNCTION,
                type_args,
                [
                    TransactionArgument(vaa, Serializer.to_bytes),
                    TransactionArgument(AccountAddress.from_str(normalise_aptos_address(fee_recipient)), Serializer.struct),
                ],
            )
        return TransactionPayload(entry_function)

    def allocate_sequence_number(self) -> int:
        """Get the next free sequence number of the sponsor account and increase the counter.

        The first call reads the sequence number from the node.
        """
        with self._lock:
            if self.current_sequence_number is None:
                self.current_sequence_number = asyncio.run(self._fetch_sequence_number())
                logger.info("Synced Aptos sequence number for %s to %d", self.address, self.current_sequence_number)
            sequence_number = self.current_sequence_number
            self.current_sequence_number += 1
            return sequence_number

    def reset_sequence_number(self):
        """Re-read the sequence number from the node on the next submission."""
        with self._lock:
            self.current_sequence_number = None

    def submit_completion(self, vaa: bytes, fee_recipient: str) -> str:
        payload = self.build_completion_payload(vaa, fee_recipient)
        try:
            sequence_number = self.allocate_sequence_number()
            tx_hash = asyncio.run(self._submit(payload, sequence_number))
        except (ApiError, httpx.HTTPError) as e:
            # The allocated sequence number may be unused on chain
            self.reset_sequence_number()
            raise DestinationTransactionFailed(f"Submitting the VAA to Aptos failed: {e}") from e
        logger.info("Aptos completion transaction submitted: %s, sequence number %d", tx_hash, sequence_number)
        return tx_hash

    def wait_for_finality(self, transaction_hash: str) -> Finality:
        try:
            return asyncio.run(self._wait(transaction_hash))
        except (ApiError, httpx.HTTPError) as e:
            raise DestinationTransactionFailed(f"Could not read Aptos transaction {transaction_hash}: {e}") from e

    async def _fetch_sequence_number(self) -> int:
        client = RestClient(self.node_url)
        try:
            return await client.account_sequence_number(self.account.address())
        finally:
            await client.close()

    async def _submit(self, payload: TransactionPayload, sequence_number: int) -> str:
        client = RestClient(self.node_url)
        try:
            signed_transaction = await client.create_bcs_signed_transaction(self.account, payload, sequence_number=sequence_number)
            return await client.submit_bcs_transaction(signed_transaction)
        finally:
            await client.close()

    async def _wait(self, transaction_hash: str) -> Finality:
        client = RestClient(self.node_url, ClientConfig(transaction_wait_in_seconds=int(self.timeout)))
        try:
            try:
                await client.wait_for_transaction(transaction_hash)
            except AssertionError as e:
                # The SDK asserts on both timeout and a failed VM status
                logger.info("Aptos transaction %s did not succeed: %s", transaction_hash, e)

            if await client.transaction_pending(transaction_hash):
                raise DestinationTransactionFailed(f"Aptos transaction {transaction_hash} not committed within {self.timeout}s")

            transaction = await client.transaction_by_hash(transaction_hash)
            if transaction.get("success"):
                return Finality.confirmed

            logger.error("Aptos transaction %s failed: %s", transaction_hash, transaction.get("vm_status"))
            return Finality.failed
        finally:
            await client.close()
