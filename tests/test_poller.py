"""Attestation poller schedule, exhaustion and cancellation.

Waits go through :class:`tests.fakes.RecordingEvent`, so the production
schedule can be asserted without sleeping.
"""

import threading
import time

import pytest

from tests.fakes import RecordingEvent, ScriptedFetcher
from wormhole_transfer.errors import AttestationTimeout, AttestationTransportError, TransferCancelled
from wormhole_transfer.poller import PollConfig, poll_attestation

#: Waits between the 30 production attempts
PRODUCTION_DELAYS = [2.0, 3.0, 4.5, 6.75, 10.125, 15.1875, 22.78125] + [30.0] * 22


def test_default_schedule():
    """Production schedule starts at 2s, grows by 1.5 and caps at 30s."""
    config = PollConfig()
    assert config.max_attempts == 30
    assert config.get_delays() == pytest.approx(PRODUCTION_DELAYS)


def test_available_on_third_attempt(signed_vaa):
    """The VAA on the third lookup means exactly three lookups and two waits."""
    fetcher = ScriptedFetcher(None, None, signed_vaa)
    cancel_event = RecordingEvent()

    vaa = poll_attestation(lambda: fetcher("id"), config=PollConfig(), cancel_event=cancel_event)

    assert vaa is signed_vaa
    assert fetcher.call_count == 3
    assert cancel_event.waits == [2.0, 3.0]


def test_available_on_first_attempt(signed_vaa):
    """No waiting when the VAA is already there."""
    cancel_event = RecordingEvent()
    vaa = poll_attestation(lambda: signed_vaa, cancel_event=cancel_event)
    assert vaa is signed_vaa
    assert cancel_event.waits == []


def test_never_available():
    """Attempts run out after exactly ``max_attempts`` lookups, without a wait after the last one."""
    fetcher = ScriptedFetcher(None)
    cancel_event = RecordingEvent()

    with pytest.raises(AttestationTimeout):
        poll_attestation(lambda: fetcher("id"), config=PollConfig(), cancel_event=cancel_event)

    assert fetcher.call_count == 30
    assert cancel_event.waits == pytest.approx(PRODUCTION_DELAYS)


def test_transport_error_burns_attempt(signed_vaa):
    """A transport error counts as an attempt and polling carries on."""
    fetcher = ScriptedFetcher(AttestationTransportError("HTTP 502"), None, signed_vaa)
    cancel_event = RecordingEvent()

    vaa = poll_attestation(lambda: fetcher("id"), cancel_event=cancel_event)

    assert vaa is signed_vaa
    assert fetcher.call_count == 3
    assert cancel_event.waits == [2.0, 3.0]


def test_all_transport_errors():
    """Every lookup failing at transport level is reported as a transport error."""
    fetcher = ScriptedFetcher(AttestationTransportError("connection refused"))
    config = PollConfig.create_test_config()

    with pytest.raises(AttestationTransportError, match="all 5 lookups failed"):
        poll_attestation(lambda: fetcher("id"), config=config, cancel_event=RecordingEvent())

    assert fetcher.call_count == config.max_attempts


def test_mixed_errors_time_out():
    """If any lookup answered "not yet", exhaustion is a timeout."""
    fetcher = ScriptedFetcher(None, AttestationTransportError("HTTP 500"))
    config = PollConfig.create_test_config()

    with pytest.raises(AttestationTimeout):
        poll_attestation(lambda: fetcher("id"), config=config, cancel_event=RecordingEvent())

    assert fetcher.call_count == config.max_attempts


def test_cancelled_before_first_attempt():
    """A cancel event already set stops before the first lookup."""
    fetcher = ScriptedFetcher(None)
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(TransferCancelled):
        poll_attestation(lambda: fetcher("id"), cancel_event=cancel_event)

    assert fetcher.call_count == 0


def test_cancelled_during_wait():
    """Cancelling during the second wait stops polling after two lookups."""
    fetcher = ScriptedFetcher(None)
    cancel_event = RecordingEvent(cancel_on_wait=2)

    with pytest.raises(TransferCancelled):
        poll_attestation(lambda: fetcher("id"), cancel_event=cancel_event)

    assert fetcher.call_count == 2


def test_cancel_wakes_sleeping_poller():
    """Setting the event from another thread interrupts a long wait promptly."""
    config = PollConfig(max_attempts=3, initial_backoff=60.0, max_backoff=60.0)
    cancel_event = threading.Event()
    timer = threading.Timer(0.05, cancel_event.set)
    timer.start()

    started = time.monotonic()
    try:
        with pytest.raises(TransferCancelled):
            poll_attestation(lambda: None, config=config, cancel_event=cancel_event)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 10


def test_on_attempt_callback(signed_vaa):
    """Progress callback sees every attempt number."""
    fetcher = ScriptedFetcher(None, None, None, signed_vaa)
    attempts = []

    poll_attestation(
        lambda: fetcher("id"),
        config=PollConfig.create_test_config(),
        cancel_event=RecordingEvent(),
        on_attempt=attempts.append,
    )

    assert attempts == [1, 2, 3, 4]


def test_invalid_config():
    """At least one attempt is required."""
    with pytest.raises(AssertionError):
        PollConfig(max_attempts=0)
