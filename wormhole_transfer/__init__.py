"""Cross-chain token transfers over the Wormhole Token Bridge.

Lock tokens on Base, wait for the guardians to sign the VAA, release on Aptos.

Orchestration:

- :class:`TransferOrchestrator`: runs one transfer through its phases
- :func:`run_transfers_parallel`: many independent transfers on worker threads
- :class:`TransferRequest` / :class:`TransferResult`: input and outcome
- :class:`TransferPhase`: where a transfer is

Attestation:

- :func:`poll_attestation` and :class:`PollConfig`: bounded, cancellable VAA polling
- :class:`SignedVAA`: the signed VAA bytes

Chain adapters, imported from their own modules:

- :class:`wormhole_transfer.evm.EvmSourceChainClient`: Base and other EVM chains
- :class:`wormhole_transfer.aptos.AptosDestinationClient`: Aptos

Errors are the :class:`TransferError` subclasses in :mod:`wormhole_transfer.errors`.
"""

from wormhole_transfer.chain import ChainAddress, DestinationChainClient, SequenceIdentifier, SourceChainClient, TransactionIdentifier
from wormhole_transfer.errors import TransferError, TransferErrorKind
from wormhole_transfer.orchestrator import AllowanceCheckConfig, TransferOrchestrator, run_transfers_parallel
from wormhole_transfer.poller import PollConfig, poll_attestation
from wormhole_transfer.transfer import Network, TransferPhase, TransferRequest, TransferResult
from wormhole_transfer.vaa import SignedVAA

__all__ = [
    "AllowanceCheckConfig",
    "ChainAddress",
    "DestinationChainClient",
    "Network",
    "PollConfig",
    "SequenceIdentifier",
    "SignedVAA",
    "SourceChainClient",
    "TransactionIdentifier",
    "TransferError",
    "TransferErrorKind",
    "TransferOrchestrator",
    "TransferPhase",
    "TransferRequest",
    "TransferResult",
    "poll_attestation",
    "run_transfers_parallel",
]
