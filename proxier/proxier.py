"""
Proxier orchestrator.

Wires the watcher, the classifier and the port-forward worker together and
exposes a read-only status listing. A Proxier is an ordinary object owned
by its caller; several can run side by side against different clusters.

Lifecycle:
    UNINITIALIZED -> STARTING -> RUNNING -> DRAINING -> STOPPED
"""
import logging
import threading
from enum import Enum

from proxier.channel import CancellationToken, HandoffChannel
from proxier.config import ProxierConfig
from proxier.endpoints import EndpointResolver
from proxier.errors import NotRunningError, ProxierError, SetupError
from proxier.handlers import ServiceProcessor
from proxier.models import ServiceStatus
from proxier.transport import KubernetesTransport
from proxier.watcher import ServiceWatcher
from proxier.worker import PortForwardWorker, TunnelStateTable

logger = logging.getLogger(__name__)


class ProxierState(Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def default_transport(core_v1, resolver, cfg):
    return KubernetesTransport(core_v1, resolver, bind_network=cfg.bind_network)


class Proxier:
    """
    Creates and maintains port-forwards to every service in a cluster.

    Args:
        core_v1: Kubernetes CoreV1Api client
        cfg: ProxierConfig (default: ProxierConfig())
        transport_factory: Callable (core_v1, resolver, cfg) -> Transport
        watcher_factory: Callable with ServiceWatcher's signature
    """

    def __init__(self, core_v1, cfg=None, transport_factory=default_transport, watcher_factory=ServiceWatcher):
        self.core_v1 = core_v1
        self.cfg = cfg or ProxierConfig()
        self.transport_factory = transport_factory
        self.watcher_factory = watcher_factory
        self.cancel = CancellationToken()

        self._state = ProxierState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._table = None
        self._processor = None

    @property
    def state(self):
        with self._state_lock:
            return self._state

    def _set_state(self, state):
        with self._state_lock:
            self._state = state
        logger.debug(f"Proxier state: {state.value}")

    def start(self):
        """
        Start the proxier and block until it has shut down.

        Returns once stop() (or the cancellation token) has been triggered and
        the watcher, the classifier and the worker have all exited.

        Raises:
            SetupError: If the transport or state table cannot be built;
                nothing has been started in that case
            ProxierError: If this proxier has already been started
        """
        with self._state_lock:
            if self._state is not ProxierState.UNINITIALIZED:
                raise ProxierError(f"proxier already started (state: {self._state.value})")
            self._state = ProxierState.STARTING

        try:
            resolver = EndpointResolver(self.core_v1)
            transport = self.transport_factory(self.core_v1, resolver, self.cfg)
            table = TunnelStateTable(transport)
        except Exception as e:
            self._set_state(ProxierState.STOPPED)
            if isinstance(e, SetupError):
                raise
            raise SetupError(f"failed to create port-forward worker: {e}") from e

        poll = self.cfg.poll_interval
        requests = HandoffChannel(self.cancel, poll_interval=poll, name="port-forward-requests")
        notifications = HandoffChannel(self.cancel, poll_interval=poll, name="service-events")

        worker = PortForwardWorker(requests, table, self.cancel)
        processor = ServiceProcessor(
            notifications,
            requests,
            resolver,
            self.cancel,
            resolve_retries=self.cfg.resolve_retries,
        )
        watcher = self.watcher_factory(
            self.core_v1,
            notifications,
            self.cancel,
            namespace=self.cfg.namespace,
            timeout_seconds=self.cfg.watch_timeout,
        )

        self._processor = processor
        self._table = table

        done = [worker.start(), processor.start(), watcher.start()]
        self._set_state(ProxierState.RUNNING)
        self._running.set()
        logger.info(f"Proxier running (namespace: {self.cfg.namespace or 'all'})")

        self.cancel.wait()
        self._set_state(ProxierState.DRAINING)
        logger.info("Proxier shutting down")

        for event in done:
            event.wait()

        self._set_state(ProxierState.STOPPED)
        logger.info("Proxier stopped")

    def wait_running(self, timeout=None):
        """Block until start() has finished its setup phase."""
        return self._running.wait(timeout)

    def stop(self):
        """Signal shutdown. start() returns once every loop has exited."""
        self.cancel.cancel()

    def list(self):
        """
        List the port-forwards known for every service.

        Services whose endpoint lookup failed on their last add event are
        included with no statuses and the failure in resolution_error.

        Returns:
            list: ServiceStatus per service identity

        Raises:
            NotRunningError: If start() has not finished its setup phase
        """
        table, processor = self._table, self._processor
        if table is None or processor is None:
            raise NotRunningError()

        statuses = [
            ServiceStatus(service=service, statuses=connection_statuses)
            for service, connection_statuses in table.snapshot()
        ]

        listed = {status.service for status in statuses}
        for service, error in processor.resolution_failures().items():
            if service not in listed:
                statuses.append(ServiceStatus(service=service, resolution_error=error))

        return statuses
