"""
Storyboard Forge - Cancellation Token
Cooperative stop signal with a hard deadline, shared between a job and whoever wants to stop it.
"""
import threading
import time

from errors import CancelledError

TIMEOUT_REASON = "Cancelled / Timeout"


class CancellationToken:
    """
    Marks a unit of work as "should stop".

    A timer cancels the token after `timeout` seconds unless `dispose()` runs first.
    Workers poll `is_cancelled()` between steps; nothing is interrupted preemptively.
    """

    def __init__(self, timeout=None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._disposed = False
        self.reason = None
        self.deadline = None
        self._timer = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout
            self._timer = threading.Timer(timeout, self.cancel, kwargs={"reason": TIMEOUT_REASON})
            self._timer.daemon = True
            self._timer.start()

    def cancel(self, reason=None):
        """Mark the token cancelled. Returns True only for the call that actually cancelled it."""
        with self._lock:
            if self._disposed or self._event.is_set():
                return False
            self.reason = reason or TIMEOUT_REASON
            self._event.set()
        return True

    def is_cancelled(self):
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancelledError(self.reason or TIMEOUT_REASON)

    def wait(self, seconds):
        """Sleep up to `seconds`, waking early on cancellation. Returns True if cancelled."""
        return self._event.wait(seconds)

    def remaining(self):
        """Seconds until the deadline, or None when the token has no timeout."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def dispose(self):
        """Stop the timeout timer. Safe to call more than once."""
        with self._lock:
            self._disposed = True
        if self._timer is not None:
            self._timer.cancel()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()
        return False

    def __repr__(self):
        state = "cancelled" if self.is_cancelled() else "active"
        return f"<CancellationToken {state} reason={self.reason!r}>"
