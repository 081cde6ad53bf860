"""Attestation polling with bounded retries.

Turns an eventually-available Wormholescan lookup into a bounded,
cancellable wait. The VAA appears some unbounded but typically short
time after the source transaction is mined.

- A lookup returning ``None`` means "not yet". We wait and try again.
- A lookup raising :py:class:`~wormhole_transfer.errors.AttestationTransportError`
  is logged and burns one attempt.
- Delays grow ``initial, initial * 1.5, initial * 1.5², ...`` capped at
  :py:attr:`PollConfig.max_backoff`. There is no wait after the last attempt.
- The wait is :py:meth:`threading.Event.wait`, so setting the cancel event
  wakes the poller immediately.

Example::

    import threading
    from functools import partial

    from wormhole_transfer.poller import PollConfig, poll_attestation
    from wormhole_transfer.vaa import fetch_vaa_by_sequence

    cancel = threading.Event()
    vaa = poll_attestation(
        partial(fetch_vaa_by_sequence, session, identifier),
        config=PollConfig(),
        cancel_event=cancel,
    )
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from wormhole_transfer.errors import AttestationTimeout, AttestationTransportError, TransferCancelled
from wormhole_transfer.vaa import SignedVAA

logger = logging.getLogger(__name__)

#: Lookup callable, returns ``None`` while the VAA is not yet published
VAALookup = Callable[[], SignedVAA | None]

#: Progress callback, receives the 1-based attempt number
AttemptCallback = Callable[[int], None]


@dataclass(slots=True, frozen=True)
class PollConfig:
    """Attestation poll schedule.

    With the production defaults the worst case wait is around twelve minutes,
    which comfortably covers Base finality plus guardian signing.

    Example:

    .. code-block:: python

        # Production (default)
        config = PollConfig()

        # Fast for tests
        config = PollConfig.create_test_config()
    """

    #: Lookups before giving up
    max_attempts: int = 30

    #: Wait after the first unsuccessful lookup, seconds
    initial_backoff: float = 2.0

    #: Multiplier applied to the wait after each attempt
    backoff_multiplier: float = 1.5

    #: Upper bound for a single wait, seconds
    max_backoff: float = 30.0

    def __post_init__(self):
        assert self.max_attempts >= 1, f"max_attempts must be positive: {self.max_attempts}"
        assert self.initial_backoff >= 0, f"initial_backoff must not be negative: {self.initial_backoff}"

    @classmethod
    def create_test_config(cls) -> "PollConfig":
        """Poll schedule tuned for fast test feedback."""
        return cls(
            max_attempts=5,
            initial_backoff=0.01,
            backoff_multiplier=1.5,
            max_backoff=0.05,
        )

    def get_delays(self) -> list[float]:
        """The waits between attempts, ``max_attempts - 1`` of them."""
        delays = []
        delay = self.initial_backoff
        for _ in range(self.max_attempts - 1):
            delays.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_backoff)
        return delays


#: Default production poll schedule
DEFAULT_POLL_CONFIG = PollConfig()


def poll_attestation(
    lookup: VAALookup,
    config: PollConfig = DEFAULT_POLL_CONFIG,
    cancel_event: threading.Event | None = None,
    on_attempt: AttemptCallback | None = None,
    description: str = "VAA",
) -> SignedVAA:
    """Poll until the VAA is available, attempts run out or we are cancelled.

    :param lookup:
        Single lookup, see :py:mod:`wormhole_transfer.vaa`.

    :param config:
        Poll schedule.

    :param cancel_event:
        Set from another thread to abort the wait.

    :param on_attempt:
        Called before every lookup with the 1-based attempt number.

    :param description:
        What we are waiting for, for log messages.

    :return:
        The signed VAA.

    :raise AttestationTimeout:
        Attempts exhausted and at least one lookup answered "not yet".

    :raise AttestationTransportError:
        Attempts exhausted and every lookup failed at transport level.

    :raise TransferCancelled:
        ``cancel_event`` was set.
    """
    if cancel_event is None:
        cancel_event = threading.Event()

    delay = config.initial_backoff
    transport_errors = 0
    last_error: AttestationTransportError | None = None

    for attempt in range(1, config.max_attempts + 1):
        if cancel_event.is_set():
            raise TransferCancelled(f"Cancelled while waiting for {description}")

        if on_attempt is not None:
            on_attempt(attempt)

        # First attempt at INFO so the user sees polling started, the rest at DEBUG
        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(log_level, "Polling %s, attempt %d/%d", description, attempt, config.max_attempts)

        try:
            vaa = lookup()
        except AttestationTransportError as e:
            transport_errors += 1
            last_error = e
            logger.warning("Polling %s attempt %d/%d failed: %s", description, attempt, config.max_attempts, e)
        else:
            if vaa is not None:
                logger.info("Got %s after %d attempts: %s", description, attempt, vaa.short_id)
                return vaa

        if attempt == config.max_attempts:
            break

        logger.debug("%s not yet available, retrying in %.1fs", description, delay)
        if cancel_event.wait(delay):
            raise TransferCancelled(f"Cancelled while waiting for {description}")

        delay = min(delay * config.backoff_multiplier, config.max_backoff)

    if transport_errors == config.max_attempts:
        raise AttestationTransportError(
            f"{description}: all {config.max_attempts} lookups failed, last error: {last_error}",
        ) from last_error

    raise AttestationTimeout(f"{description} not available after {config.max_attempts} attempts")
