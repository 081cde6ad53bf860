"""EVM source chain adapter for the Wormhole Token Bridge.

Locks ERC-20 tokens with ``TokenBridge.transferTokens()`` and reads the
Wormhole message sequence from the core bridge ``LogMessagePublished``
event in the receipt.

The Token Bridge itself does not emit a transfer event. The core bridge
publishes one message per transfer with the token bridge as ``sender``,
and that ``(chain, sender, sequence)`` triplet addresses the signed VAA.

Example::

    from web3 import HTTPProvider, Web3

    from wormhole_transfer.evm import EvmSourceChainClient
    from wormhole_transfer.hotwallet import HotWallet

    web3 = Web3(HTTPProvider(os.environ["BASE_RPC_URL"]))
    hot_wallet = HotWallet.from_private_key(os.environ["BASE_SPONSOR_PRIVATE_KEY"])
    hot_wallet.sync_nonce(web3)

    source = EvmSourceChainClient(
        web3,
        hot_wallet,
        token_address=BASE_SEPOLIA_USDC,
        token_bridge_address=BASE_SEPOLIA_WORMHOLE_TOKEN_BRIDGE,
        core_bridge_address=BASE_SEPOLIA_WORMHOLE_CORE,
    )
"""

import logging
from contextlib import contextmanager
from decimal import Decimal

import requests
from eth_abi import decode
from eth_typing import HexAddress
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.types import TxReceipt

from wormhole_transfer.abi import get_deployed_contract
from wormhole_transfer.chain import AuthorizationOutcome, ChainAddress, Finality, SequenceIdentifier, SourceChainClient, SourceTransfer
from wormhole_transfer.constants import (
    APPROVE_AMOUNT_MULTIPLIER,
    DEFAULT_APPROVE_GAS,
    DEFAULT_RECEIPT_TIMEOUT,
    DEFAULT_TRANSFER_GAS,
    USDC_DECIMALS,
    WORMHOLE_CHAIN_BASE,
)
from wormhole_transfer.errors import AuthorizationFailed, SourceTransactionFailed, TransferError
from wormhole_transfer.hotwallet import HotWallet

logger = logging.getLogger(__name__)

#: ``LogMessagePublished(address indexed sender, uint64 sequence, uint32 nonce, bytes payload, uint8 consistencyLevel)``
LOG_MESSAGE_PUBLISHED_TOPIC = HexBytes(keccak(text="LogMessagePublished(address,uint64,uint32,bytes,uint8)"))

#: Non-indexed fields of ``LogMessagePublished``
LOG_MESSAGE_PUBLISHED_DATA_TYPES = ["uint64", "uint32", "bytes", "uint8"]

#: Wormhole nonce we pass to ``transferTokens()``, used for message batching only
WORMHOLE_NONCE = 0

#: We do not use relayers
ARBITER_FEE = 0

#: Errors from web3.py, the JSON-RPC node or the HTTP transport
RPC_ERRORS = (Web3Exception, ValueError, requests.RequestException)


def to_hex_hash(tx_hash: HexBytes | bytes | str) -> str:
    """Normalise a transaction hash to ``0x`` prefixed lowercase hex."""
    return HexBytes(tx_hash).to_0x_hex()


def extract_sequence(receipt: TxReceipt | dict, core_bridge_address: str, emitter_address: str) -> int | None:
    """Find the Wormhole sequence in a transfer receipt.

    :param receipt:
        Receipt of a ``transferTokens()`` transaction.

    :param core_bridge_address:
        Wormhole core bridge, the contract emitting ``LogMessagePublished``.

    :param emitter_address:
        Token bridge, the ``sender`` of the message.

    :return:
        Sequence, or ``None`` if no matching event is in the receipt.
    """
    core = core_bridge_address.lower()
    sender_topic = HexBytes(HexBytes(emitter_address).rjust(32, b"\x00"))
    for log in receipt["logs"]:
        if log["address"].lower() != core:
            continue
        topics = [HexBytes(t) for t in log["topics"]]
        if len(topics) < 2 or topics[0] != LOG_MESSAGE_PUBLISHED_TOPIC:
            continue
        if topics[1] != sender_topic:
            continue
        sequence, _nonce, _payload, _consistency = decode(LOG_MESSAGE_PUBLISHED_DATA_TYPES, HexBytes(log["data"]))
        return sequence
    return None


class EvmSourceChainClient(SourceChainClient):
    """Wormhole Token Bridge on an EVM chain.

    One instance can drive several transfers from worker threads: the only
    mutable state is the :py:class:`HotWallet` nonce counter, which is locked.

    :param web3:
        Connection to the source chain.

    :param hot_wallet:
        Sponsor wallet with synced nonce.

    :param token_address:
        ERC-20 to lock.

    :param token_bridge_address:
        Wormhole Token Bridge, also the message emitter and allowance spender.

    :param core_bridge_address:
        Wormhole core bridge.

    :param chain_id:
        Wormhole chain id of this chain.

    :param decimals:
        Token decimals.

    :param approve_multiplier:
        Raise allowance to this multiple of the transfer amount.

    :param receipt_timeout:
        Seconds to wait for a receipt.
    """

    def __init__(
        self,
        web3: Web3,
        hot_wallet: HotWallet,
        token_address: HexAddress | str,
        token_bridge_address: HexAddress | str,
        core_bridge_address: HexAddress | str,
        chain_id: int = WORMHOLE_CHAIN_BASE,
        decimals: int = USDC_DECIMALS,
        approve_multiplier: int = APPROVE_AMOUNT_MULTIPLIER,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        approve_gas: int = DEFAULT_APPROVE_GAS,
        transfer_gas: int = DEFAULT_TRANSFER_GAS,
    ):
        self.web3 = web3
        self.hot_wallet = hot_wallet
        self.token = get_deployed_contract(web3, "ERC20.json", token_address)
        self.token_bridge = get_deployed_contract(web3, "TokenBridge.json", token_bridge_address)
        self.core_bridge = get_deployed_contract(web3, "Wormhole.json", core_bridge_address)
        self.chain_id = chain_id
        self.decimals = decimals
        self.approve_multiplier = approve_multiplier
        self.receipt_timeout = receipt_timeout
        self.approve_gas = approve_gas
        self.transfer_gas = transfer_gas

    def __repr__(self):
        return f"<EvmSourceChainClient chain:{self.chain_id} token:{self.token.address} bridge:{self.token_bridge.address}>"

    @property
    def address(self) -> HexAddress:
        return self.hot_wallet.address

    @property
    def token_address(self) -> HexAddress:
        return self.token.address

    @property
    def spender_address(self) -> HexAddress:
        return self.token_bridge.address

    @contextmanager
    def _rpc(self, description: str, error_class: type[TransferError] = SourceTransactionFailed, source_tx: str | None = None):
        """Map web3.py and transport failures to our error taxonomy."""
        try:
            yield
        except TransferError:
            raise
        except RPC_ERRORS as e:
            raise error_class(f"{description} failed on the source chain: {e}", source_tx=source_tx) from e

    def check_balance(self, owner: str, token: str) -> int:
        assert Web3.to_checksum_address(token) == self.token.address, f"This client handles {self.token.address} only, got {token}"
        with self._rpc("Reading token balance"):
            return self.token.functions.balanceOf(Web3.to_checksum_address(owner)).call()

    def check_native_gas_balance(self, owner: str) -> Decimal:
        with self._rpc("Reading native balance"):
            balance = self.web3.eth.get_balance(Web3.to_checksum_address(owner))
        return Decimal(self.web3.from_wei(balance, "ether"))

    def fetch_authorization(self, owner: str, spender: str) -> int:
        with self._rpc("Reading allowance", AuthorizationFailed):
            return self.token.functions.allowance(Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)).call()

    def ensure_authorization(self, owner: str, spender: str, min_amount: int) -> AuthorizationOutcome:
        assert Web3.to_checksum_address(owner) == self.hot_wallet.address, f"Can only approve from the sponsor wallet {self.hot_wallet.address}, got {owner}"

        allowance = self.fetch_authorization(owner, spender)
        if allowance >= min_amount:
            logger.info("Sufficient allowance %d for %s", allowance, spender)
            return AuthorizationOutcome.confirmed

        approve_amount = min_amount * self.approve_multiplier
        logger.info(
            "Approving %s to spend %d raw units, current allowance %d, required %d",
            spender,
            approve_amount,
            allowance,
            min_amount,
        )

        with self._rpc("Approval", AuthorizationFailed):
            func = self.token.functions.approve(Web3.to_checksum_address(spender), approve_amount)
            tx_hash = self.hot_wallet.transact_with_contract(func, {"gas": self.approve_gas})

        approve_tx = to_hex_hash(tx_hash)
        logger.info("Approval transaction %s, waiting for confirmation", approve_tx)
        try:
            finality = self.wait_for_finality(approve_tx)
        except SourceTransactionFailed as e:
            raise AuthorizationFailed(f"Approval transaction {approve_tx} not confirmed: {e}") from e

        if finality != Finality.confirmed:
            raise AuthorizationFailed(f"Approval transaction failed: {approve_tx}")

        logger.info("Approval confirmed: %s", approve_tx)
        return AuthorizationOutcome.raised

    def submit_transfer(self, amount: int, recipient: ChainAddress) -> SourceTransfer:
        """Lock tokens with ``transferTokens()`` and wait for the receipt.

        The core bridge message fee is attached as the transaction value.
        """
        with self._rpc("Submitting transferTokens()"):
            message_fee = self.core_bridge.functions.messageFee().call()
            func = self.token_bridge.functions.transferTokens(
                self.token.address,
                amount,
                recipient.chain,
                recipient.to_bytes32(),
                ARBITER_FEE,
                WORMHOLE_NONCE,
            )
            tx_hash = to_hex_hash(self.hot_wallet.transact_with_contract(func, {"gas": self.transfer_gas, "value": message_fee}))

        logger.info(
            "Transfer transaction submitted: %s, amount %d raw units to %s on chain %d",
            tx_hash,
            amount,
            recipient,
            recipient.chain,
        )
        return self.fetch_transfer(tx_hash)

    def fetch_transfer(self, transaction_hash: str) -> SourceTransfer:
        receipt = self._wait_for_receipt(transaction_hash)
        if receipt["status"] == 0:
            raise SourceTransactionFailed(f"Transfer transaction reverted: {transaction_hash}", source_tx=transaction_hash)

        sequence = extract_sequence(receipt, self.core_bridge.address, self.token_bridge.address)
        if sequence is None:
            logger.warning("No LogMessagePublished event from %s in %s, falling back to lookup by transaction hash", self.token_bridge.address, transaction_hash)
            return SourceTransfer(transaction_hash=transaction_hash)

        logger.info("Wormhole sequence %d for %s", sequence, transaction_hash)
        identifier = SequenceIdentifier(
            emitter_chain=self.chain_id,
            emitter_address=self.token_bridge.address,
            sequence=sequence,
        )
        return SourceTransfer(transaction_hash=transaction_hash, identifier=identifier)

    def wait_for_finality(self, transaction_hash: str) -> Finality:
        receipt = self._wait_for_receipt(transaction_hash)
        return Finality.confirmed if receipt["status"] == 1 else Finality.failed

    def _wait_for_receipt(self, transaction_hash: str) -> TxReceipt:
        try:
            return self.web3.eth.wait_for_transaction_receipt(HexBytes(transaction_hash), timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise SourceTransactionFailed(
                f"Transaction {transaction_hash} not mined within {self.receipt_timeout}s",
                source_tx=transaction_hash,
            ) from e
        except RPC_ERRORS as e:
            raise SourceTransactionFailed(f"Could not read receipt for {transaction_hash}: {e}", source_tx=transaction_hash) from e
