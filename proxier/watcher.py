"""
Service watcher.

Lists services once, then follows the watch stream from the list's
resource version. Only additions and deletions are forwarded, matching an
informer with add/delete handlers: a service already known is not
re-announced when a watch restarts, and a relist after an expired resource
version emits the difference against what was known.
"""
import logging
import threading

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from proxier.channel import Cancelled
from proxier.constants import DEFAULT_WATCH_TIMEOUT
from proxier.models import NotificationKind, ServiceNotification

logger = logging.getLogger(__name__)

# HTTP status for an expired resource version
GONE = 410


class ResourceVersionExpired(Exception):
    pass


class ServiceWatcher:
    """Emits ServiceNotification objects onto a HandoffChannel until cancelled."""

    def __init__(
        self,
        core_v1,
        notifications,
        cancel,
        namespace=None,
        timeout_seconds=DEFAULT_WATCH_TIMEOUT,
        retry_interval=5,
        watch_factory=watch.Watch,
    ):
        self.core_v1 = core_v1
        self.notifications = notifications
        self.cancel = cancel
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self.retry_interval = retry_interval
        self.watch_factory = watch_factory
        self.done = threading.Event()
        self._known = {}
        self._last_resource_version = None
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self.run, name="service-watcher", daemon=True)
        self._thread.start()
        return self.done

    def _list_func(self):
        if self.namespace:
            return self.core_v1.list_namespaced_service, {"namespace": self.namespace}
        return self.core_v1.list_service_for_all_namespaces, {}

    def run(self):
        try:
            resource_version = None
            while not self.cancel.is_cancelled():
                try:
                    if resource_version is None:
                        resource_version = self.relist()
                    resource_version = self.follow(resource_version)
                except ResourceVersionExpired:
                    logger.info("Service watch expired, relisting")
                    resource_version = None
                except ApiException as e:
                    if e.status == GONE:
                        resource_version = None
                        continue
                    logger.warning(f"Service watch failed ({e.status} {e.reason}), retrying in {self.retry_interval}s")
                    self.cancel.wait(self.retry_interval)
                except (HTTPError, OSError) as e:
                    # Connection lost; resume from the last event seen.
                    resource_version = self._last_resource_version
                    logger.warning(f"Service watch connection lost ({e}), retrying in {self.retry_interval}s")
                    self.cancel.wait(self.retry_interval)
        except Cancelled:
            pass
        finally:
            logger.debug("Service watcher stopped")
            self.done.set()

    def relist(self):
        """
        List services and emit the difference against known services.

        Returns:
            str: resource version to watch from
        """
        func, kwargs = self._list_func()
        services = func(**kwargs)

        current = {}
        for svc in services.items:
            current[(svc.metadata.namespace, svc.metadata.name)] = svc

        for key in [k for k in self._known if k not in current]:
            self._emit(NotificationKind.DELETED, self._known.pop(key))

        for key, svc in current.items():
            if key not in self._known:
                self._known[key] = svc
                self._emit(NotificationKind.ADDED, svc)
            else:
                self._known[key] = svc

        logger.debug(f"Listed {len(current)} service(s)")
        self._last_resource_version = services.metadata.resource_version
        return self._last_resource_version

    def follow(self, resource_version):
        """
        Follow the watch stream until it times out or cancellation fires.

        Returns:
            str: last resource version seen

        Raises:
            ResourceVersionExpired: If the server reports the version as gone
        """
        func, kwargs = self._list_func()
        w = self.watch_factory()
        try:
            for event in w.stream(
                func,
                resource_version=resource_version,
                timeout_seconds=self.timeout_seconds,
                **kwargs,
            ):
                if self.cancel.is_cancelled():
                    raise Cancelled("watch")

                event_type = event["type"]
                if event_type == "ERROR":
                    raw = event.get("raw_object") or {}
                    if raw.get("code") == GONE:
                        raise ResourceVersionExpired()
                    logger.warning(f"Service watch error: {raw.get('message', raw)}")
                    continue

                svc = event["object"]
                resource_version = svc.metadata.resource_version
                self._handle(event_type, svc)
                self._last_resource_version = resource_version
        finally:
            w.stop()
        return resource_version

    def _handle(self, event_type, svc):
        key = (svc.metadata.namespace, svc.metadata.name)
        if event_type == "ADDED":
            known = key in self._known
            self._known[key] = svc
            if not known:
                self._emit(NotificationKind.ADDED, svc)
        elif event_type == "MODIFIED":
            self._known[key] = svc
        elif event_type == "DELETED":
            self._known.pop(key, None)
            self._emit(NotificationKind.DELETED, svc)

    def _emit(self, kind, svc):
        logger.debug(f"Got service {kind.value} event for {svc.metadata.namespace}/{svc.metadata.name}")
        self.notifications.put(ServiceNotification(kind=kind, service=svc))
