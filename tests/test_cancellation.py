import time

import pytest

from cancellation import TIMEOUT_REASON, CancellationToken
from errors import CancelledError


def test_timeout_cancels_token():
    token = CancellationToken(timeout=0.05)
    assert not token.is_cancelled()
    assert token.wait(2)
    assert token.is_cancelled()
    assert token.reason == TIMEOUT_REASON
    token.dispose()


def test_cancel_is_idempotent_and_keeps_first_reason():
    token = CancellationToken(timeout=10)
    assert token.cancel("Stopped by user") is True
    assert token.cancel("something else") is False
    assert token.reason == "Stopped by user"
    token.dispose()


def test_dispose_stops_the_timer():
    token = CancellationToken(timeout=0.05)
    token.dispose()
    time.sleep(0.15)
    assert not token.is_cancelled()


def test_cancel_after_dispose_is_a_noop():
    token = CancellationToken(timeout=10)
    token.dispose()
    assert token.cancel() is False
    assert not token.is_cancelled()
    token.dispose()


def test_wait_wakes_up_early_on_cancel():
    token = CancellationToken()
    token.cancel()
    started = time.monotonic()
    assert token.wait(5)
    assert time.monotonic() - started < 1


def test_raise_if_cancelled_carries_reason():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel("Stopped by user")
    with pytest.raises(CancelledError, match="Stopped by user"):
        token.raise_if_cancelled()


def test_remaining():
    assert CancellationToken().remaining() is None
    with CancellationToken(timeout=30) as token:
        assert 29 < token.remaining() <= 30
    assert token.remaining() > 0
