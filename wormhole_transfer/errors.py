"""Closed error taxonomy for cross-chain transfers.

Chain client adapters, the attestation fetcher and the poller raise
one of the :py:class:`TransferError` subclasses below. The orchestrator
catches them at the top of a run and folds them into a single
:py:class:`~wormhole_transfer.transfer.TransferResult`, so callers never
see web3.py or Aptos SDK exception shapes.
"""

import enum


class TransferErrorKind(enum.Enum):
    """What went wrong with a transfer."""

    insufficient_gas = "insufficient_gas"
    insufficient_token_balance = "insufficient_token_balance"
    authorization_failed = "authorization_failed"
    source_transaction_failed = "source_transaction_failed"
    attestation_timeout = "attestation_timeout"
    attestation_transport_error = "attestation_transport_error"
    destination_transaction_failed = "destination_transaction_failed"
    cancelled = "cancelled"
    configuration_error = "configuration_error"


class TransferError(Exception):
    """Base class for all transfer failures.

    :param message:
        Human-actionable description.

    :param source_tx:
        Source chain transaction hash, if the source transfer already went through.
        Needed to resume the transfer manually.
    """

    #: Set by subclasses
    kind: TransferErrorKind

    def __init__(self, message: str, source_tx: str | None = None):
        super().__init__(message)
        self.source_tx = source_tx


class InsufficientGas(TransferError):
    """Native balance below the minimum needed to pay for transactions."""

    kind = TransferErrorKind.insufficient_gas


class InsufficientTokenBalance(TransferError):
    """Token balance below the requested transfer amount."""

    kind = TransferErrorKind.insufficient_token_balance


class AuthorizationFailed(TransferError):
    """Allowance could not be raised, or the raised allowance never became visible."""

    kind = TransferErrorKind.authorization_failed


class SourceTransactionFailed(TransferError):
    """Source chain rejected or reverted the transfer transaction."""

    kind = TransferErrorKind.source_transaction_failed


class AttestationTimeout(TransferError):
    """Attestation poller ran out of attempts."""

    kind = TransferErrorKind.attestation_timeout


class AttestationTransportError(TransferError):
    """Attestation API could not be reached, or gave a non-retryable response."""

    kind = TransferErrorKind.attestation_transport_error


class DestinationTransactionFailed(TransferError):
    """Destination chain rejected or reverted the completion transaction."""

    kind = TransferErrorKind.destination_transaction_failed


class TransferCancelled(TransferError):
    """Caller aborted the run."""

    kind = TransferErrorKind.cancelled


class ConfigurationError(TransferError):
    """Required configuration missing or malformed."""

    kind = TransferErrorKind.configuration_error
