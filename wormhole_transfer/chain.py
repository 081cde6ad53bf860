"""Chain client capability interface.

The orchestrator only talks to chains through :py:class:`SourceChainClient`
and :py:class:`DestinationChainClient`. Concrete adapters live in
:py:mod:`wormhole_transfer.evm` and :py:mod:`wormhole_transfer.aptos`.

Addresses, amounts and transfer identifiers are passed around as the small
value types defined here, never as loosely formatted strings. Conversions
between human and raw token amounts happen only in :py:func:`to_raw_amount`
and :py:func:`from_raw_amount`.
"""

import abc
import enum
from dataclasses import dataclass
from decimal import Decimal


class AuthorizationOutcome(enum.Enum):
    """Result of :py:meth:`SourceChainClient.ensure_authorization`."""

    #: Allowance was already sufficient, no transaction sent
    confirmed = "confirmed"

    #: Allowance was raised with an approval transaction
    raised = "raised"


class Finality(enum.Enum):
    """Result of waiting for a transaction."""

    confirmed = "confirmed"
    failed = "failed"


@dataclass(slots=True, frozen=True)
class ChainAddress:
    """An address on a particular Wormhole chain.

    EVM addresses are 20 bytes, Aptos account addresses 32 bytes.
    Wormhole moves both around as 32 byte left-padded values.
    """

    #: Wormhole chain id
    chain: int

    #: ``0x`` prefixed hex address in the chain's native length
    address: str

    def to_bytes32(self) -> bytes:
        """Left-pad the address to the 32 byte Wormhole universal address."""
        return encode_universal_address(self.address)

    def __str__(self) -> str:
        return self.address


@dataclass(slots=True, frozen=True)
class SequenceIdentifier:
    """Wormhole message id: emitter chain, emitter contract and sequence.

    Sequences are assigned by the core bridge per emitter and never reused.
    """

    #: Wormhole chain id of the source chain
    emitter_chain: int

    #: Emitter contract (the token bridge) as ``0x`` prefixed hex
    emitter_address: str

    #: Sequence from ``LogMessagePublished``
    sequence: int

    def __str__(self) -> str:
        return f"{self.emitter_chain}/{emitter_address_hex(self.emitter_address)}/{self.sequence}"


@dataclass(slots=True, frozen=True)
class TransactionIdentifier:
    """Fallback lookup key when no sequence could be read from the source transaction."""

    #: Wormhole chain id of the source chain
    emitter_chain: int

    #: Source transaction hash
    transaction_hash: str

    def __str__(self) -> str:
        return f"{self.emitter_chain}/{self.transaction_hash}"


#: Either way to address an attestation
TransferIdentifier = SequenceIdentifier | TransactionIdentifier


@dataclass(slots=True, frozen=True)
class SourceTransfer:
    """What the source chain gave us back for a transfer transaction."""

    #: Transaction hash, ``0x`` prefixed
    transaction_hash: str

    #: Wormhole message id, ``None`` if the sequence could not be extracted
    identifier: SequenceIdentifier | None = None


def encode_universal_address(address: str) -> bytes:
    """Encode a hex address as a left-padded 32 byte value.

    :param address:
        ``0x`` prefixed hex, 20 bytes (EVM) or up to 32 bytes (Aptos).

    :raise ValueError:
        If the address is not hex or is longer than 32 bytes.
    """
    raw = address.lower().removeprefix("0x")
    if len(raw) % 2:
        raw = "0" + raw
    data = bytes.fromhex(raw)
    if len(data) > 32:
        raise ValueError(f"Address too long for a Wormhole universal address: {address}")
    return data.rjust(32, b"\x00")


def emitter_address_hex(address: str) -> str:
    """Emitter address as 64 lowercase hex characters without ``0x``, the way Wormholescan wants it."""
    return encode_universal_address(address).hex()


def to_raw_amount(amount: Decimal, decimals: int) -> int:
    """Convert a human token amount to raw integer units.

    :raise ValueError:
        If the amount has more precision than the token supports.
    """
    raw = amount.scaleb(decimals)
    if raw != raw.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimals")
    return int(raw)


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    """Convert raw integer token units to a human amount."""
    return Decimal(raw).scaleb(-decimals)


class SourceChainClient(abc.ABC):
    """Source chain capabilities the orchestrator needs.

    Implementations must be safe for concurrent use from several worker threads,
    each driving its own transfer.
    """

    #: Wormhole chain id of this chain
    chain_id: int

    #: Token being transferred
    token_address: str

    #: Contract the allowance is granted to
    spender_address: str

    #: Token decimals
    decimals: int

    @property
    @abc.abstractmethod
    def address(self) -> str:
        """Sponsor wallet address."""

    @abc.abstractmethod
    def check_balance(self, owner: str, token: str) -> int:
        """Token balance in raw units."""

    @abc.abstractmethod
    def check_native_gas_balance(self, owner: str) -> Decimal:
        """Native currency balance, in whole units (ETH)."""

    @abc.abstractmethod
    def fetch_authorization(self, owner: str, spender: str) -> int:
        """Current allowance in raw units."""

    @abc.abstractmethod
    def ensure_authorization(self, owner: str, spender: str, min_amount: int) -> AuthorizationOutcome:
        """Make sure ``spender`` may move at least ``min_amount`` raw units.

        No-op when the allowance is already sufficient.

        :raise AuthorizationFailed:
            The approval transaction failed.
        """

    @abc.abstractmethod
    def submit_transfer(self, amount: int, recipient: ChainAddress) -> SourceTransfer:
        """Send the transfer transaction.

        :raise SourceTransactionFailed:
            Transaction could not be broadcast or reverted.
        """

    @abc.abstractmethod
    def fetch_transfer(self, transaction_hash: str) -> SourceTransfer:
        """Re-read an earlier transfer transaction and extract its Wormhole message id.

        :raise SourceTransactionFailed:
            Transaction not found or reverted.
        """

    @abc.abstractmethod
    def wait_for_finality(self, transaction_hash: str) -> Finality:
        """Block until the transaction is mined."""


class DestinationChainClient(abc.ABC):
    """Destination chain capabilities the orchestrator needs."""

    #: Wormhole chain id of this chain
    chain_id: int

    @property
    @abc.abstractmethod
    def address(self) -> str:
        """Sponsor account address, the default transfer recipient."""

    @abc.abstractmethod
    def submit_completion(self, vaa: bytes, fee_recipient: str) -> str:
        """Submit the signed VAA and return the transaction hash.

        :raise DestinationTransactionFailed:
            Transaction could not be submitted.
        """

    @abc.abstractmethod
    def wait_for_finality(self, transaction_hash: str) -> Finality:
        """Block until the transaction is committed."""
