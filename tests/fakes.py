"""In-memory chain clients and a scripted VAA fetcher.

Nothing here touches a network. Waits go through :class:`RecordingEvent`,
which records the requested timeouts and returns immediately.
"""

import threading
import time
from decimal import Decimal

from wormhole_transfer.chain import (
    AuthorizationOutcome,
    ChainAddress,
    DestinationChainClient,
    Finality,
    SequenceIdentifier,
    SourceChainClient,
    SourceTransfer,
)
from wormhole_transfer.constants import WORMHOLE_CHAIN_APTOS, WORMHOLE_CHAIN_BASE
from wormhole_transfer.orchestrator import AllowanceCheckConfig, TransferOrchestrator


SPONSOR = "0x1111111111111111111111111111111111111111"
TOKEN = "0x2222222222222222222222222222222222222222"
TOKEN_BRIDGE = "0x3333333333333333333333333333333333333333"
APTOS_SPONSOR = "0x" + "ab" * 32
SOURCE_TX = "0x" + "5a" * 32
DESTINATION_TX = "0xdef0" + "00" * 30


class RecordingEvent(threading.Event):
    """Cancel event whose ``wait()`` records the timeout and does not sleep."""

    def __init__(self, cancel_on_wait: int | None = None):
        super().__init__()
        self.waits: list[float] = []
        self.cancel_on_wait = cancel_on_wait

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.cancel_on_wait is not None and len(self.waits) >= self.cancel_on_wait:
            self.set()
        return self.is_set()


class StubSourceClient(SourceChainClient):
    """Source chain with configurable balances and scripted allowance reads.

    With ``spend_on_submit`` a transfer debits the balance and the allowance
    like the token bridge does, and reverts when either is too low.
    ``preflight_delay`` slows down the balance read to widen race windows.
    """

    chain_id = WORMHOLE_CHAIN_BASE
    decimals = 6
    token_address = TOKEN
    spender_address = TOKEN_BRIDGE

    def __init__(
        self,
        balance: int = 100_000_000,
        native_balance: Decimal = Decimal("0.5"),
        allowance: int = 0,
        allowance_reads: list[int] | None = None,
        sequence: int | None = 42,
        finality: Finality = Finality.confirmed,
        spend_on_submit: bool = False,
        preflight_delay: float = 0,
    ):
        self.balance = balance
        self.native_balance = native_balance
        self.allowance = allowance
        self.allowance_reads = list(allowance_reads or [])
        self.sequence = sequence
        self.finality = finality
        self.spend_on_submit = spend_on_submit
        self.preflight_delay = preflight_delay
        self.calls: list[str] = []
        self.submitted: list[tuple[int, ChainAddress]] = []
        self.approvals: list[int] = []
        self.reverted: list[str] = []
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return SPONSOR

    def check_balance(self, owner, token):
        self.calls.append("check_balance")
        balance = self.balance
        time.sleep(self.preflight_delay)
        return balance

    def check_native_gas_balance(self, owner):
        self.calls.append("check_native_gas_balance")
        return self.native_balance

    def fetch_authorization(self, owner, spender):
        self.calls.append("fetch_authorization")
        if self.allowance_reads:
            return self.allowance_reads.pop(0)
        return self.allowance

    def ensure_authorization(self, owner, spender, min_amount):
        self.calls.append("ensure_authorization")
        if self.allowance >= min_amount:
            return AuthorizationOutcome.confirmed
        self.approvals.append(min_amount * 2)
        self.allowance = min_amount * 2
        return AuthorizationOutcome.raised

    def _transfer(self, tx_hash: str) -> SourceTransfer:
        if self.sequence is None:
            return SourceTransfer(transaction_hash=tx_hash)
        identifier = SequenceIdentifier(emitter_chain=self.chain_id, emitter_address=TOKEN_BRIDGE, sequence=self.sequence)
        return SourceTransfer(transaction_hash=tx_hash, identifier=identifier)

    def submit_transfer(self, amount, recipient):
        with self._lock:
            self.calls.append("submit_transfer")
            self.submitted.append((amount, recipient))
            tx_hash = SOURCE_TX if len(self.submitted) == 1 else "0x" + f"{len(self.submitted):064x}"
            if self.spend_on_submit:
                if amount > self.balance or amount > self.allowance:
                    self.reverted.append(tx_hash)
                else:
                    self.balance -= amount
                    self.allowance -= amount
        return self._transfer(tx_hash)

    def fetch_transfer(self, transaction_hash):
        self.calls.append("fetch_transfer")
        return self._transfer(transaction_hash)

    def wait_for_finality(self, transaction_hash):
        self.calls.append("wait_for_finality")
        if transaction_hash in self.reverted:
            return Finality.failed
        return self.finality


class StubDestinationClient(DestinationChainClient):
    """Destination chain recording completions."""

    chain_id = WORMHOLE_CHAIN_APTOS

    def __init__(self, finality: Finality = Finality.confirmed, fail_submit: Exception | None = None):
        self.finality = finality
        self.fail_submit = fail_submit
        self.completions: list[tuple[bytes, str]] = []

    @property
    def address(self) -> str:
        return APTOS_SPONSOR

    def submit_completion(self, vaa, fee_recipient):
        if self.fail_submit is not None:
            raise self.fail_submit
        self.completions.append((vaa, fee_recipient))
        return DESTINATION_TX

    def wait_for_finality(self, transaction_hash):
        return self.finality


class ScriptedFetcher:
    """VAA lookup returning scripted answers in order.

    Entries are ``None`` (not yet), a :class:`SignedVAA`, or an exception to raise.
    After the script runs out the last entry repeats.
    """

    def __init__(self, *answers):
        self.answers = list(answers) or [None]
        self.identifiers = []

    def __call__(self, identifier):
        self.identifiers.append(identifier)
        index = min(len(self.identifiers) - 1, len(self.answers) - 1)
        answer = self.answers[index]
        if isinstance(answer, Exception):
            raise answer
        return answer

    @property
    def call_count(self) -> int:
        return len(self.identifiers)


def create_orchestrator(source, destination, fetcher, **kwargs) -> TransferOrchestrator:
    """Orchestrator with the production poll schedule and no allowance settle delay."""
    kwargs.setdefault("allowance_config", AllowanceCheckConfig.create_test_config())
    return TransferOrchestrator(source, destination, vaa_fetcher=fetcher, **kwargs)
