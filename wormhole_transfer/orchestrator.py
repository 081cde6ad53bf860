"""Cross-chain transfer orchestration.

Drives one transfer through three strictly ordered phases:

1. **Source transfer**: pre-flight balance checks, allowance,
   ``transferTokens()`` on the source chain
2. **Attestation**: poll Wormholescan until the guardians have signed the VAA
3. **Destination completion**: submit the VAA on the destination chain

Every failure ends the run with a :py:class:`~wormhole_transfer.transfer.TransferResult`
carrying ``success=False``, an error kind and a human-actionable message.
Nothing is retried here beyond what the attestation poller and the allowance
propagation check already do. In particular ``submit_transfer()`` is called at
most once per run.

When the source transaction went through but a later phase failed,
the result carries the source transaction hash and
:py:meth:`TransferOrchestrator.resume` re-drives phases 2 and 3 from it.

Example::

    from wormhole_transfer.orchestrator import TransferOrchestrator
    from wormhole_transfer.transfer import TransferRequest

    orchestrator = TransferOrchestrator(source, destination)
    result = orchestrator.run(TransferRequest(amount="1.0", destination_chain="aptos"))
    if result.success:
        print("Completed", result.destination_tx)
    else:
        print("Failed", result.error_kind, result.error)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from decimal import Decimal
from functools import partial
from typing import Callable

from tqdm_loggable.auto import tqdm

from wormhole_transfer.chain import (
    AuthorizationOutcome,
    ChainAddress,
    DestinationChainClient,
    Finality,
    SourceChainClient,
    SourceTransfer,
    TransactionIdentifier,
    TransferIdentifier,
    from_raw_amount,
    to_raw_amount,
)
from wormhole_transfer.constants import DESTINATION_CHAINS, MIN_NATIVE_GAS_BALANCE, WORMHOLE_CHAIN_NAMES
from wormhole_transfer.errors import (
    AttestationTransportError,
    AuthorizationFailed,
    DestinationTransactionFailed,
    InsufficientGas,
    InsufficientTokenBalance,
    SourceTransactionFailed,
    TransferCancelled,
    TransferError,
)
from wormhole_transfer.poller import DEFAULT_POLL_CONFIG, PollConfig, poll_attestation
from wormhole_transfer.transfer import Network, TransferPhase, TransferRequest, TransferResult
from wormhole_transfer.vaa import SignedVAA, create_wormholescan_session, fetch_vaa

logger = logging.getLogger(__name__)

#: Single VAA lookup by whichever identifier we have
VAAFetcher = Callable[[TransferIdentifier], SignedVAA | None]

#: Called on every phase change
PhaseCallback = Callable[[TransferPhase], None]


@dataclass(slots=True, frozen=True)
class AllowanceCheckConfig:
    """Re-read schedule after raising the allowance.

    Some RPC nodes serve a stale ``allowance()`` for a moment after the
    approval receipt. This small fixed retry absorbs it and is unrelated to
    attestation polling.
    """

    #: Wait after the approval receipt before the first read, seconds
    settle_delay: float = 2.0

    #: Reads before giving up
    attempts: int = 5

    #: Wait between reads, seconds
    delay: float = 1.0

    @classmethod
    def create_test_config(cls) -> "AllowanceCheckConfig":
        """No waiting, for tests."""
        return cls(settle_delay=0, attempts=3, delay=0)


#: Default production allowance check
DEFAULT_ALLOWANCE_CHECK_CONFIG = AllowanceCheckConfig()


#: Error an unexpected exception is reported as, by the phase in flight
_UNEXPECTED_ERROR_CLASSES: dict[TransferPhase, type[TransferError]] = {
    TransferPhase.init: SourceTransactionFailed,
    TransferPhase.source_transfer_pending: SourceTransactionFailed,
    TransferPhase.source_transfer_confirmed: AttestationTransportError,
    TransferPhase.attestation_pending: AttestationTransportError,
    TransferPhase.attestation_received: DestinationTransactionFailed,
    TransferPhase.destination_submit_pending: DestinationTransactionFailed,
}


class TransferOrchestrator:
    """Run transfers from one source chain to one destination chain.

    The orchestrator keeps no per-run state, so one instance can run several
    transfers from worker threads, see :py:func:`run_transfers_parallel`.
    The source phase, from the balance checks until the source transaction
    is final, runs one transfer at a time. Attestation polling and destination
    completion overlap, so the destination client must be safe for concurrent use.

    :param source:
        Source chain client.

    :param destination:
        Destination chain client.

    :param network:
        Network the clients are connected to. Requests for another network are rejected.

    :param vaa_fetcher:
        Single VAA lookup. Defaults to Wormholescan for ``network``.

    :param poll_config:
        Attestation poll schedule.

    :param allowance_config:
        Allowance propagation check schedule.

    :param min_native_gas:
        Minimum native balance before we send anything.

    :param on_phase_change:
        Called on every phase change, e.g. for a progress bar.
    """

    def __init__(
        self,
        source: SourceChainClient,
        destination: DestinationChainClient,
        network: Network = Network.testnet,
        vaa_fetcher: VAAFetcher | None = None,
        poll_config: PollConfig = DEFAULT_POLL_CONFIG,
        allowance_config: AllowanceCheckConfig = DEFAULT_ALLOWANCE_CHECK_CONFIG,
        min_native_gas: Decimal = MIN_NATIVE_GAS_BALANCE,
        on_phase_change: PhaseCallback | None = None,
    ):
        self.source = source
        self.destination = destination
        self.network = network
        if vaa_fetcher is None:
            vaa_fetcher = partial(fetch_vaa, create_wormholescan_session(network))
        self.vaa_fetcher = vaa_fetcher
        self.poll_config = poll_config
        self.allowance_config = allowance_config
        self.min_native_gas = min_native_gas
        self.on_phase_change = on_phase_change
        self._source_lock = threading.Lock()

    def __repr__(self):
        return f"<TransferOrchestrator {self.source} → {self.destination} {self.network.value}>"

    def run(
        self,
        request: TransferRequest,
        cancel_event: threading.Event | None = None,
        on_phase_change: PhaseCallback | None = None,
    ) -> TransferResult:
        """Run a transfer end to end.

        :param request:
            What to transfer.

        :param cancel_event:
            Set from another thread to abort. Interrupts attestation polling;
            confirmed transactions stay confirmed.

        :param on_phase_change:
            Per-run phase callback, overrides the one given to the constructor.

        :return:
            Finalised result. Never raises for transfer failures.

        :raise ValueError:
            The request does not fit this orchestrator: wrong network or chain,
            too many decimals or a malformed recipient.
        """
        raw_amount, recipient = self.prepare(request)

        cancel_event = cancel_event or threading.Event()
        notify = on_phase_change or self.on_phase_change
        result = TransferResult()

        logger.info(
            "Starting transfer of %s from %s to %s, recipient %s",
            request.amount,
            self._chain_name(self.source.chain_id),
            self._chain_name(self.destination.chain_id),
            recipient,
        )

        try:
            source_transfer = self._transfer_on_source(raw_amount, recipient, result, cancel_event, notify)
            vaa = self._fetch_attestation(source_transfer, result, cancel_event, notify)
            self._complete_on_destination(vaa, recipient.address, result, cancel_event, notify)
        except TransferError as e:
            self._fail(result, e, notify)
        except Exception as e:
            logger.error("Unexpected error during %s", result.phase.value, exc_info=True)
            error_class = _UNEXPECTED_ERROR_CLASSES.get(result.phase, SourceTransactionFailed)
            self._fail(result, error_class(f"Unexpected error: {e}"), notify)

        return result

    def resume(
        self,
        source_tx: str,
        recipient: str | None = None,
        cancel_event: threading.Event | None = None,
        on_phase_change: PhaseCallback | None = None,
    ) -> TransferResult:
        """Finish a transfer whose source transaction already went through.

        Re-reads the source receipt for the Wormhole sequence, then runs the
        attestation and destination phases. The source chain is never written to.
        Safe to call repeatedly: the destination bridge rejects an already redeemed VAA.

        :param source_tx:
            Source transaction hash from an earlier failed run.

        :param recipient:
            Fee recipient on the destination chain. Defaults to the destination sponsor.
        """
        cancel_event = cancel_event or threading.Event()
        notify = on_phase_change or self.on_phase_change
        fee_recipient = recipient or self.destination.address
        result = TransferResult(source_tx=source_tx)

        logger.info("Resuming transfer from source transaction %s", source_tx)

        try:
            source_transfer = self.source.fetch_transfer(source_tx)
            self._enter(result, TransferPhase.source_transfer_confirmed, notify)
            vaa = self._fetch_attestation(source_transfer, result, cancel_event, notify)
            self._complete_on_destination(vaa, fee_recipient, result, cancel_event, notify)
        except TransferError as e:
            self._fail(result, e, notify)
        except Exception as e:
            logger.error("Unexpected error while resuming during %s", result.phase.value, exc_info=True)
            error_class = _UNEXPECTED_ERROR_CLASSES.get(result.phase, AttestationTransportError)
            self._fail(result, error_class(f"Unexpected error: {e}"), notify)

        return result

    def prepare(self, request: TransferRequest) -> tuple[int, ChainAddress]:
        """Check a request fits this orchestrator. Touches no chain.

        :return:
            Raw token amount and the resolved recipient.

        :raise ValueError:
            Wrong network or chain, too many decimals or a malformed recipient.
        """
        if request.network != self.network:
            raise ValueError(f"Orchestrator runs on {self.network.value}, request is for {request.network.value}")

        if DESTINATION_CHAINS[request.destination_chain] != self.destination.chain_id:
            raise ValueError(f"Orchestrator delivers to {self._chain_name(self.destination.chain_id)}, request is for {request.destination_chain}")

        recipient = self.resolve_recipient(request)
        raw_amount = to_raw_amount(request.decimal_amount, self.source.decimals)
        recipient.to_bytes32()
        return raw_amount, recipient

    def resolve_recipient(self, request: TransferRequest) -> ChainAddress:
        """Explicit recipient, or the destination sponsor account."""
        return ChainAddress(chain=self.destination.chain_id, address=request.recipient or self.destination.address)

    def _transfer_on_source(
        self,
        raw_amount: int,
        recipient: ChainAddress,
        result: TransferResult,
        cancel_event: threading.Event,
        notify: PhaseCallback | None,
    ) -> SourceTransfer:
        source = self.source
        owner = source.address

        # Runs share the sponsor balance and allowance. The next run's pre-flight
        # checks must see what this run's transfer spent.
        with self._source_lock:
            self._check_balances(owner, raw_amount)
            self._ensure_allowance(owner, raw_amount, cancel_event)

            if cancel_event.is_set():
                raise TransferCancelled("Cancelled before the source transfer was sent")

            self._enter(result, TransferPhase.source_transfer_pending, notify)
            source_transfer = source.submit_transfer(raw_amount, recipient)
            result.source_tx = source_transfer.transaction_hash

            if source.wait_for_finality(source_transfer.transaction_hash) != Finality.confirmed:
                raise SourceTransactionFailed(f"Source transaction reverted: {source_transfer.transaction_hash}")

        self._enter(result, TransferPhase.source_transfer_confirmed, notify)
        return source_transfer

    def _check_balances(self, owner: str, raw_amount: int):
        """Fail fast before sending anything. Gas is checked first."""
        source = self.source

        native_balance = source.check_native_gas_balance(owner)
        if native_balance < self.min_native_gas:
            raise InsufficientGas(f"Insufficient native balance for gas fees.\n  Current balance: {native_balance}\n  Required: {self.min_native_gas} minimum\n  Wallet: {owner}")

        balance = source.check_balance(owner, source.token_address)
        if balance < raw_amount:
            raise InsufficientTokenBalance(
                f"Insufficient token balance.\n  Current balance: {from_raw_amount(balance, source.decimals)}\n  Required: {from_raw_amount(raw_amount, source.decimals)}\n  Wallet: {owner}",
            )

        logger.info("Pre-flight checks passed for %s: native balance %s, token balance %d raw", owner, native_balance, balance)

    def _ensure_allowance(self, owner: str, raw_amount: int, cancel_event: threading.Event):
        """Raise the allowance if needed and wait until the node serves the new value."""
        source = self.source
        spender = source.spender_address

        outcome = source.ensure_authorization(owner, spender, raw_amount)
        if outcome == AuthorizationOutcome.confirmed:
            return

        config = self.allowance_config
        if cancel_event.wait(config.settle_delay):
            raise TransferCancelled("Cancelled while waiting for the allowance to propagate")

        allowance = 0
        for attempt in range(1, config.attempts + 1):
            allowance = source.fetch_authorization(owner, spender)
            logger.info("Checking allowance (attempt %d/%d): %d", attempt, config.attempts, allowance)
            if allowance >= raw_amount:
                return
            if attempt < config.attempts and cancel_event.wait(config.delay):
                raise TransferCancelled("Cancelled while waiting for the allowance to propagate")

        raise AuthorizationFailed(
            f"Allowance {allowance} still below required {raw_amount} after approval for {spender}. This may be a state propagation issue on the RPC node, wait a few seconds and try again.",
        )

    def _fetch_attestation(
        self,
        source_transfer: SourceTransfer,
        result: TransferResult,
        cancel_event: threading.Event,
        notify: PhaseCallback | None,
    ) -> SignedVAA:
        self._enter(result, TransferPhase.attestation_pending, notify)

        if source_transfer.identifier is not None:
            identifier = source_transfer.identifier
            vaa = self._poll(identifier, cancel_event)
        else:
            identifier = TransactionIdentifier(
                emitter_chain=self.source.chain_id,
                transaction_hash=source_transfer.transaction_hash,
            )
            logger.info("No sequence for %s, looking up the VAA by transaction hash", source_transfer.transaction_hash)
            try:
                vaa = self.vaa_fetcher(identifier)
            except AttestationTransportError as e:
                logger.warning("Lookup by transaction hash failed, falling back to polling: %s", e)
                vaa = None

            if vaa is None:
                vaa = self._poll(identifier, cancel_event)

        result.attestation_id = vaa.short_id
        self._enter(result, TransferPhase.attestation_received, notify)
        return vaa

    def _poll(self, identifier: TransferIdentifier, cancel_event: threading.Event) -> SignedVAA:
        return poll_attestation(
            partial(self.vaa_fetcher, identifier),
            config=self.poll_config,
            cancel_event=cancel_event,
            description=f"VAA {identifier}",
        )

    def _complete_on_destination(
        self,
        vaa: SignedVAA,
        fee_recipient: str,
        result: TransferResult,
        cancel_event: threading.Event,
        notify: PhaseCallback | None,
    ):
        if cancel_event.is_set():
            raise TransferCancelled("Cancelled before the destination completion was sent")

        destination = self.destination
        self._enter(result, TransferPhase.destination_submit_pending, notify)
        tx_hash = destination.submit_completion(vaa.vaa, fee_recipient=fee_recipient)
        result.destination_tx = tx_hash

        if destination.wait_for_finality(tx_hash) != Finality.confirmed:
            raise DestinationTransactionFailed(f"Destination completion transaction failed: {tx_hash}")

        result.succeed(tx_hash)
        logger.info("Transfer complete, source %s, destination %s", result.source_tx, tx_hash)
        if notify is not None:
            notify(TransferPhase.destination_confirmed)

    def _enter(self, result: TransferResult, phase: TransferPhase, notify: PhaseCallback | None):
        result.advance(phase)
        logger.info("Transfer phase: %s", phase.value)
        if notify is not None:
            notify(phase)

    def _fail(self, result: TransferResult, error: TransferError, notify: PhaseCallback | None):
        if result.source_tx is None and error.source_tx is not None:
            result.source_tx = error.source_tx

        message = str(error)
        if result.source_tx and result.phase.ordinal >= TransferPhase.source_transfer_confirmed.ordinal:
            message += f"\nSource transaction {result.source_tx} is confirmed. Resume with: wormhole-transfer resume --source-tx {result.source_tx}"
        elif result.source_tx:
            message += f"\nSource transaction: {result.source_tx}"

        logger.error("Transfer failed in phase %s (%s): %s", result.phase.value, error.kind.value, message)
        result.fail(error.kind, message)
        if notify is not None:
            notify(TransferPhase.failed)

    @staticmethod
    def _chain_name(chain_id: int) -> str:
        return WORMHOLE_CHAIN_NAMES.get(chain_id, f"chain-{chain_id}")


def run_transfers_parallel(
    orchestrator: TransferOrchestrator,
    requests: list[TransferRequest],
    max_workers: int | None = None,
    progress: bool = True,
    cancel_event: threading.Event | None = None,
) -> list[TransferResult]:
    """Run several independent transfers concurrently.

    Each transfer owns its result. The attestation wait dominates wall clock
    time, so running transfers side by side brings ``N`` waits down to about one.
    Source transfers still go out one after another from the shared sponsor
    wallet, see :py:class:`TransferOrchestrator`.

    Every request is validated before the first transfer starts, so a bad
    request fails the batch before anything is sent.

    When *progress* is ``True``, shows a ``tqdm`` progress bar advancing
    on phase transitions of each transfer.

    :param orchestrator:
        Shared orchestrator. Its chain clients must be safe for concurrent use.

    :param requests:
        Transfers to run.

    :param max_workers:
        Worker threads. Defaults to one per request.

    :param progress:
        Show a progress bar.

    :param cancel_event:
        Set to abort every transfer still waiting.

    :return:
        Results in the same order as ``requests``.

    :raise ValueError:
        A request does not fit the orchestrator, see :py:meth:`TransferOrchestrator.prepare`.
    """
    if not requests:
        return []

    for idx, request in enumerate(requests):
        try:
            orchestrator.prepare(request)
        except ValueError as e:
            raise ValueError(f"Transfer {idx} ({request.amount}): {e}") from e

    if max_workers is None:
        max_workers = len(requests)

    cancel_event = cancel_event or threading.Event()
    n_transfers = len(requests)
    success_phases = [p for p in TransferPhase if p != TransferPhase.failed]
    n_steps = len(success_phases) - 1
    transfer_phases: list[TransferPhase] = [TransferPhase.init] * n_transfers
    lock = threading.Lock()

    progress_bar = tqdm(
        total=n_transfers * n_steps,
        desc="Wormhole transfers",
        unit="phase",
        disable=not progress,
    )

    def _update_phase(idx: int, phase: TransferPhase):
        """Thread-safe progress bar update."""
        with lock:
            old_phase = transfer_phases[idx]
            transfer_phases[idx] = phase
            if phase == TransferPhase.failed:
                # Count the skipped phases as done so the bar reaches its total
                advance = n_steps - old_phase.ordinal
            else:
                advance = max(0, phase.ordinal - old_phase.ordinal)
            if advance > 0:
                progress_bar.update(advance)
            parts = [f"{i}:{transfer_phases[i].value}" for i in range(n_transfers)]
            progress_bar.set_description(f"Wormhole [{', '.join(parts)}]")

    def _run(idx: int, request: TransferRequest) -> TransferResult:
        threading.current_thread().name = f"transfer-{idx}"
        return orchestrator.run(request, cancel_event=cancel_event, on_phase_change=partial(_update_phase, idx))

    logger.info("Running %d transfers with %d workers", n_transfers, max_workers)

    results: dict[int, TransferResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="transfer") as executor:
        futures = {executor.submit(_run, idx, request): idx for idx, request in enumerate(requests)}
        for future in as_completed(futures):
            idx = futures[future]
            results[idx] = future.result()

    progress_bar.close()

    succeeded = sum(1 for r in results.values() if r.success)
    logger.info("Parallel transfers done: %d/%d succeeded", succeeded, n_transfers)
    return [results[i] for i in range(n_transfers)]
