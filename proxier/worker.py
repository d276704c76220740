"""
Tunnel state table and the worker that applies intents to it.

The table maps each ServiceIdentity to the list of tunnels that exist for
it: one for an ordinary service, one per pod for a headless service. The
worker thread is its only writer; any number of threads may call
snapshot() at the same time.
"""
import logging
import threading

from proxier.channel import Cancelled
from proxier.errors import TransportError
from proxier.models import CreateIntent, DeleteIntent, TunnelEntry, TunnelState, TunnelStatus

logger = logging.getLogger(__name__)


class TunnelStateTable:
    """Authoritative map of ServiceIdentity -> [TunnelEntry]."""

    def __init__(self, transport):
        self.transport = transport
        self._lock = threading.Lock()
        self._entries = {}

    def apply(self, intent):
        """Apply a CreateIntent or DeleteIntent."""
        if isinstance(intent, CreateIntent):
            return self._create(intent)
        if isinstance(intent, DeleteIntent):
            return self._delete(intent)
        raise TypeError(f"unknown intent: {intent!r}")

    def _create(self, intent):
        entry = TunnelEntry(
            service=intent.service,
            endpoint=intent.endpoint,
            status=TunnelStatus(ports=intent.ports, hostnames=intent.hostnames),
        )
        with self._lock:
            self._entries.setdefault(intent.service, []).append(entry)

        target = f" -> {entry.endpoint}" if entry.endpoint else ""
        logger.info(f"Creating port-forward for {intent.service}{target} (ports: {list(intent.ports)})")

        try:
            self.transport.open(entry, self.update_status)
        except TransportError as e:
            logger.warning(f"Failed to open port-forward for {intent.service}{target}: {e}")
            self.update_status(entry, state=TunnelState.FAILED, last_error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error opening port-forward for {intent.service}{target}")
            self.update_status(entry, state=TunnelState.FAILED, last_error=str(e))
        return entry

    def _delete(self, intent):
        with self._lock:
            removed = self._entries.pop(intent.service, [])

        if not removed:
            logger.debug(f"No port-forwards to delete for {intent.service}")
            return removed

        logger.info(f"Deleting {len(removed)} port-forward(s) for {intent.service}")
        self._close(removed)
        return removed

    def _close(self, entries):
        for entry in entries:
            try:
                self.transport.close(entry)
            except Exception:
                logger.exception(f"Failed to close port-forward for {entry.service}")

    def update_status(self, entry, **changes):
        """
        Replace the status of a tunnel.

        Called by the transport, from any thread. The entry is located under
        its service identity; updates for a tunnel that has already
        been removed are dropped.

        Returns:
            bool: True if the entry was still present
        """
        with self._lock:
            for existing in self._entries.get(entry.service, ()):
                if existing is entry:
                    existing.status = existing.status.evolve(**changes)
                    return True
        return False

    def snapshot(self):
        """
        Consistent point-in-time copy of the table.

        Returns:
            list: (ServiceIdentity, tuple of TunnelStatus) pairs
        """
        with self._lock:
            return [
                (service, tuple(entry.status for entry in entries))
                for service, entries in self._entries.items()
            ]

    def entries(self, service):
        with self._lock:
            return list(self._entries.get(service, ()))

    def clear(self):
        """Remove every entry and close its tunnel."""
        with self._lock:
            removed = [entry for entries in self._entries.values() for entry in entries]
            self._entries.clear()
        self._close(removed)
        return removed


class PortForwardWorker:
    """
    Consumes intents from the request channel and applies them to the table.

    On cancellation every remaining tunnel is torn down before `done` is set.
    """

    def __init__(self, requests, table, cancel):
        self.requests = requests
        self.table = table
        self.cancel = cancel
        self.done = threading.Event()
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self.run, name="port-forward-worker", daemon=True)
        self._thread.start()
        return self.done

    def run(self):
        try:
            while not self.cancel.is_cancelled():
                try:
                    intent = self.requests.get()
                except Cancelled:
                    break

                try:
                    self.table.apply(intent)
                except Exception:
                    logger.exception(f"Failed to apply {type(intent).__name__} for {intent.service}")
        finally:
            closed = self.table.clear()
            if closed:
                logger.info(f"Closed {len(closed)} port-forward(s) on shutdown")
            self.transport_shutdown()
            self.done.set()

    def transport_shutdown(self):
        try:
            self.table.transport.shutdown()
        except Exception:
            logger.exception("Failed to shut down transport")
