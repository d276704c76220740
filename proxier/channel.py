"""
Unbuffered handoff channel and cancellation token.

A HandoffChannel holds at most one item in flight and put() returns only
once a consumer has taken it. A stalled consumer therefore stalls every
producer upstream of it; that is the only backpressure in the pipeline.
"""
import threading

from proxier.constants import DEFAULT_POLL_INTERVAL


class CancellationToken:
    """Simple cancellation token using threading.Event."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        """Signal cancellation."""
        self._event.set()

    def is_cancelled(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        """
        Wait for cancellation.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            bool: True if cancelled, False if timeout elapsed
        """
        return self._event.wait(timeout)


class Cancelled(Exception):
    """Raised when the cancellation token fires while a worker is blocked."""


class HandoffChannel:
    """Synchronous rendezvous between one or more producers and consumers."""

    def __init__(self, cancel, poll_interval=DEFAULT_POLL_INTERVAL, name="channel"):
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.name = name
        self._cond = threading.Condition()
        self._item = None
        self._full = False
        self._taken = 0
        self._put_lock = threading.Lock()

    def put(self, item):
        """
        Hand an item to a consumer and wait until it has been taken.

        Raises:
            Cancelled: If cancellation fires before a consumer takes the item
        """
        # One producer at a time owns the slot.
        with self._put_lock:
            with self._cond:
                self._item = item
                self._full = True
                ticket = self._taken + 1
                self._cond.notify_all()

                while self._taken < ticket:
                    if self.cancel.is_cancelled():
                        self._item = None
                        self._full = False
                        raise Cancelled(self.name)
                    self._cond.wait(self.poll_interval)

    def get(self):
        """
        Take the next item, blocking until a producer offers one.

        Raises:
            Cancelled: If cancellation fires while waiting
        """
        with self._cond:
            while True:
                # Nothing is taken once cancelled, even if an item is waiting.
                if self.cancel.is_cancelled():
                    raise Cancelled(self.name)
                if self._full:
                    break
                self._cond.wait(self.poll_interval)

            item = self._item
            self._item = None
            self._full = False
            self._taken += 1
            self._cond.notify_all()
            return item
