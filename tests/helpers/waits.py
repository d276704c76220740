"""Polling helpers for tests that involve background threads."""
import time


def wait_for(predicate, timeout=5, interval=0.01):
    """
    Poll predicate until it returns a truthy value.

    Args:
        predicate: Zero-argument callable
        timeout: Maximum time to wait in seconds (default: 5)
        interval: Time between checks in seconds (default: 0.01)

    Returns:
        The truthy value, or the last falsy one on timeout
    """
    deadline = time.time() + timeout
    result = predicate()
    while not result and time.time() < deadline:
        time.sleep(interval)
        result = predicate()
    return result


class ListChannel:
    """Channel stand-in that collects everything put on it."""

    def __init__(self):
        self.items = []

    def put(self, item):
        self.items.append(item)
