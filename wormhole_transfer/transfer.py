"""Transfer request, phases and result.

A :py:class:`TransferRequest` is created by the caller and consumed once.
The orchestrator fills a :py:class:`TransferResult` as phases complete and
finalises it exactly once with :py:meth:`TransferResult.succeed` or
:py:meth:`TransferResult.fail`.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from wormhole_transfer.constants import DESTINATION_CHAINS
from wormhole_transfer.errors import TransferErrorKind


class Network(enum.Enum):
    """Which Wormhole network we run against."""

    testnet = "testnet"
    mainnet = "mainnet"

    @classmethod
    def parse(cls, value: str) -> "Network":
        """Parse ``Testnet`` / ``Mainnet`` in any letter case."""
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise ValueError(f"Unknown network {value!r}, use Testnet or Mainnet") from e


class TransferPhase(enum.Enum):
    """Phase of a single transfer.

    Phases advance strictly in declaration order. :py:attr:`failed` can be
    entered from any phase before :py:attr:`destination_confirmed`.
    """

    #: Request accepted, pre-flight checks running
    init = "init"

    #: Transfer transaction sent on the source chain
    source_transfer_pending = "source_transfer_pending"

    #: Source transaction mined
    source_transfer_confirmed = "source_transfer_confirmed"

    #: Polling Wormholescan for the signed VAA
    attestation_pending = "attestation_pending"

    #: Signed VAA in hand
    attestation_received = "attestation_received"

    #: Completion transaction sent on the destination chain
    destination_submit_pending = "destination_submit_pending"

    #: Tokens released on the destination chain
    destination_confirmed = "destination_confirmed"

    #: Terminal failure
    failed = "failed"

    @property
    def ordinal(self) -> int:
        return list(TransferPhase).index(self)


@dataclass(slots=True, frozen=True)
class TransferRequest:
    """What the caller wants moved.

    Example::

        request = TransferRequest(amount="1.5", destination_chain="aptos")
    """

    #: Decimal string in the token's units, e.g. ``"1.5"`` USDC
    amount: str

    #: Destination chain name, see :py:data:`~wormhole_transfer.constants.DESTINATION_CHAINS`
    destination_chain: str = "aptos"

    #: Explicit recipient. ``None`` sends to the destination sponsor account.
    recipient: str | None = None

    #: Network selector
    network: Network = Network.testnet

    def __post_init__(self):
        amount = self.decimal_amount
        if not amount.is_finite() or amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount!r}")
        if self.destination_chain not in DESTINATION_CHAINS:
            raise ValueError(f"Unsupported destination chain {self.destination_chain!r}, supported: {', '.join(DESTINATION_CHAINS)}")

    @property
    def decimal_amount(self) -> Decimal:
        try:
            return Decimal(self.amount)
        except InvalidOperation as e:
            raise ValueError(f"Transfer amount is not a decimal number: {self.amount!r}") from e


@dataclass(slots=True)
class TransferResult:
    """Outcome of one orchestrator run.

    Assembled incrementally, then frozen with :py:meth:`succeed` or :py:meth:`fail`.
    On failure after the source transaction went through,
    :py:attr:`source_tx` tells how to resume.
    """

    #: ``True`` only after the destination transaction confirmed
    success: bool = False

    #: Source chain transaction hash
    source_tx: str | None = None

    #: Short id of the signed VAA, the first bytes as hex
    attestation_id: str | None = None

    #: Destination chain transaction hash
    destination_tx: str | None = None

    #: Human-actionable failure reason
    error: str | None = None

    #: Failure category
    error_kind: TransferErrorKind | None = None

    #: Last phase reached. ``failed`` for failed runs, see :py:attr:`failed_phase`.
    phase: TransferPhase = TransferPhase.init

    #: Phase in flight when the run failed
    failed_phase: TransferPhase | None = None

    #: Set once finalised
    finalised: bool = field(default=False, repr=False)

    def advance(self, phase: TransferPhase):
        """Move to a later phase."""
        assert not self.finalised, f"Result already finalised: {self}"
        assert phase.ordinal > self.phase.ordinal, f"Cannot move from {self.phase} to {phase}"
        self.phase = phase

    def succeed(self, destination_tx: str) -> "TransferResult":
        assert not self.finalised, f"Result already finalised: {self}"
        self.destination_tx = destination_tx
        self.phase = TransferPhase.destination_confirmed
        self.success = True
        self.finalised = True
        return self

    def fail(self, kind: TransferErrorKind, error: str) -> "TransferResult":
        assert not self.finalised, f"Result already finalised: {self}"
        self.failed_phase = self.phase
        self.phase = TransferPhase.failed
        self.error_kind = kind
        self.error = error
        self.success = False
        self.finalised = True
        return self
