"""
Service event classification.

Turns service notifications into tunnel intents. classify() is the pure
part; ServiceProcessor runs it on a single thread, strictly in arrival
order, and hands each intent to the worker through an unbuffered channel.

Intent rules:
    - Ordinary service added: one CreateIntent, no endpoint
    - Headless service added: one CreateIntent per ready pod endpoint
    - Any service deleted: exactly one DeleteIntent
    - The cluster's own "kubernetes" service: nothing, ever
"""
import logging
import threading

from proxier.channel import Cancelled
from proxier.constants import (
    DEFAULT_RESOLVE_RETRY_DELAY,
    DNS_SUFFIXES,
    HEADLESS_CLUSTER_IP,
    RESERVED_SERVICE_NAME,
)
from proxier.errors import ResolutionError
from proxier.models import (
    CreateIntent,
    DeleteIntent,
    NotificationKind,
    ServiceIdentity,
    Topology,
)

logger = logging.getLogger(__name__)


def service_identity(service):
    """Derive the ServiceIdentity of a V1Service."""
    topology = Topology.ORDINARY
    if service.spec is not None and service.spec.cluster_ip == HEADLESS_CLUSTER_IP:
        topology = Topology.DECENTRALIZED

    return ServiceIdentity(
        name=service.metadata.name,
        namespace=service.metadata.namespace,
        topology=topology,
    )


def service_ports(service):
    """Declared port numbers, in declaration order."""
    if service.spec is None or not service.spec.ports:
        return ()
    return tuple(int(p.port) for p in service.spec.ports)


def service_hostnames(name, namespace):
    """
    Progressively qualified DNS aliases of a service.

    e.g. web, web.default, web.default.svc, web.default.svc.cluster,
    web.default.svc.cluster.local
    """
    return (name,) + tuple(f"{name}.{namespace}{suffix}" for suffix in DNS_SUFFIXES)


def pod_hostnames(service_name, pod_name, namespace):
    """
    DNS aliases of one pod behind a headless service.

    The first alias is the bare service name; the rest are rooted at
    "<pod>.<service>".
    """
    root = f"{pod_name}.{service_name}"
    return (service_name,) + tuple(f"{root}.{namespace}{suffix}" for suffix in DNS_SUFFIXES)


def classify(notification, resolve):
    """
    Convert one notification into the intents it implies.

    Args:
        notification: ServiceNotification to classify
        resolve: Callable (name, namespace) -> list of EndpointTarget, only
            called for headless services being added

    Returns:
        list: CreateIntent/DeleteIntent instances, possibly empty

    Raises:
        ResolutionError: If endpoint lookup fails; no intent is produced
    """
    info = service_identity(notification.service)

    if info.name == RESERVED_SERVICE_NAME:
        return []

    if notification.kind is NotificationKind.DELETED:
        return [DeleteIntent(service=info)]

    if notification.kind is not NotificationKind.ADDED:
        raise ValueError(f"unknown notification kind: {notification.kind!r}")

    ports = service_ports(notification.service)

    if info.topology is Topology.ORDINARY:
        return [
            CreateIntent(
                service=info,
                ports=ports,
                hostnames=service_hostnames(info.name, info.namespace),
            )
        ]

    if info.topology is Topology.DECENTRALIZED:
        return [
            CreateIntent(
                service=info,
                ports=ports,
                endpoint=target,
                hostnames=pod_hostnames(info.name, target.pod_name, info.namespace),
            )
            for target in resolve(info.name, info.namespace)
        ]

    raise ValueError(f"unknown topology: {info.topology!r}")


class ServiceProcessor:
    """
    Single serialized consumer of service notifications.

    Reads from the notification channel, classifies, and puts every
    resulting intent on the request channel. A failure in one notification
    never stops the loop. `done` is set once the loop has exited.
    """

    def __init__(
        self,
        notifications,
        requests,
        resolver,
        cancel,
        resolve_retries=0,
        retry_delay=DEFAULT_RESOLVE_RETRY_DELAY,
    ):
        self.notifications = notifications
        self.requests = requests
        self.resolver = resolver
        self.cancel = cancel
        self.resolve_retries = max(resolve_retries, 0)
        self.retry_delay = retry_delay
        self.done = threading.Event()
        self._failures = {}
        self._failures_lock = threading.Lock()
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self.run, name="service-processor", daemon=True)
        self._thread.start()
        return self.done

    def resolution_failures(self):
        """Copy of identity -> last resolution error message."""
        with self._failures_lock:
            return dict(self._failures)

    def run(self):
        try:
            while not self.cancel.is_cancelled():
                try:
                    notification = self.notifications.get()
                except Cancelled:
                    break

                if not self._process(notification):
                    break
        finally:
            logger.debug("Service processor stopped")
            self.done.set()

    def _process(self, notification):
        """Handle one notification. Returns False once cancelled."""
        try:
            info = service_identity(notification.service)
            logger.debug(f"Processing {notification.kind.value} event for {info}")
            intents = classify(notification, self._resolve)
        except Cancelled:
            return False
        except ResolutionError as e:
            logger.warning(f"Skipping port-forward for {info}: {e}")
            self._record_failure(info, str(e))
            return True
        except Exception:
            logger.exception(f"Failed to process {notification.kind.value} service event")
            return True

        self._clear_failure(info)

        try:
            for intent in intents:
                self.requests.put(intent)
        except Cancelled:
            return False

        return True

    def _resolve(self, name, namespace):
        attempts = self.resolve_retries + 1
        for attempt in range(1, attempts + 1):
            if self.cancel.is_cancelled():
                raise Cancelled("resolve")
            try:
                targets = self.resolver.resolve(name, namespace)
            except ResolutionError as e:
                if attempt == attempts:
                    raise
                logger.info(f"Retrying endpoint lookup ({attempt}/{self.resolve_retries}): {e}")
                if self.cancel.wait(self.retry_delay):
                    raise Cancelled("resolve")
                continue
            if self.cancel.is_cancelled():
                raise Cancelled("resolve")
            return targets

    def _record_failure(self, info, message):
        with self._failures_lock:
            self._failures[info] = message

    def _clear_failure(self, info):
        with self._failures_lock:
            self._failures.pop(info, None)
