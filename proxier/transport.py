"""
Tunnel transport.

The transport is the only component that touches the network. It is handed
TunnelEntry objects by the state table and reports back through the
on_status callback it receives with each entry.

KubernetesTransport gives every tunnel its own loopback address, listens on
each of the service's ports there, and relays every accepted connection to
the target pod through the API server's port-forward subresource.
"""
import ipaddress
import logging
import select
import socket
import threading

from kubernetes.client.rest import ApiException
from kubernetes.stream import portforward

from proxier.constants import DEFAULT_BIND_NETWORK
from proxier.errors import ResolutionError, TransportError
from proxier.models import TunnelState

logger = logging.getLogger(__name__)

BUFFER_SIZE = 4096


class Transport:
    """Boundary between the state table and the network."""

    def open(self, entry, on_status):
        """
        Start forwarding for an entry.

        Args:
            entry: TunnelEntry to open
            on_status: Callable (entry, **changes) used to report status

        Raises:
            TransportError: If the tunnel cannot be opened
        """
        raise NotImplementedError

    def close(self, entry):
        """Tear down an entry's tunnel. No-op if it is not open."""
        raise NotImplementedError

    def shutdown(self):
        """Release anything left over once the worker stops."""


class AddressAllocator:
    """Hands out loopback addresses from a network, one per tunnel."""

    def __init__(self, network):
        self.network = ipaddress.ip_network(network)
        self._lock = threading.Lock()
        self._in_use = set()

    def acquire(self):
        with self._lock:
            for host in self.network.hosts():
                if host not in self._in_use:
                    self._in_use.add(host)
                    return str(host)
        raise TransportError(f"no free addresses left in {self.network}")

    def release(self, address):
        with self._lock:
            self._in_use.discard(ipaddress.ip_address(address))


def _relay(local_sock, remote_sock, stop_event):
    """Copy bytes both ways until either side closes or stop_event is set."""
    sockets = [local_sock, remote_sock]
    while not stop_event.is_set():
        readable, _, exceptional = select.select(sockets, [], sockets, 0.5)
        if exceptional:
            return
        for sock in readable:
            data = sock.recv(BUFFER_SIZE)
            if not data:
                return
            other = remote_sock if sock is local_sock else local_sock
            other.sendall(data)


class _Tunnel:
    """Listeners and threads belonging to one TunnelEntry."""

    def __init__(self, entry, address, pod):
        self.entry = entry
        self.address = address
        self.pod = pod
        self.stop = threading.Event()
        self.listeners = []
        self.threads = []


class KubernetesTransport(Transport):
    """Port-forwards through the Kubernetes API server."""

    def __init__(self, core_v1, resolver, bind_network=DEFAULT_BIND_NETWORK):
        self.core_v1 = core_v1
        self.resolver = resolver
        self.addresses = AddressAllocator(bind_network)
        self._lock = threading.Lock()
        self._tunnels = {}

    def open(self, entry, on_status):
        service = entry.service
        pod = entry.endpoint or self._ready_pod(service)

        target_ports = self._target_ports(entry)
        address = self.addresses.acquire()
        tunnel = _Tunnel(entry, address, pod)

        try:
            for port, target_port in target_ports:
                listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                listener.bind((address, port))
                listener.listen()
                listener.settimeout(0.5)
                tunnel.listeners.append(listener)

                thread = threading.Thread(
                    target=self._accept_loop,
                    args=(tunnel, listener, target_port, on_status),
                    name=f"pf-{service.name}-{port}",
                    daemon=True,
                )
                tunnel.threads.append(thread)
        except OSError as e:
            self._teardown(tunnel)
            raise TransportError(f"failed to bind {address}: {e}") from e

        with self._lock:
            self._tunnels[id(entry)] = tunnel
        for thread in tunnel.threads:
            thread.start()

        local = tuple(f"{address}:{port}" for port, _ in target_ports)
        logger.info(f"Forwarding {', '.join(local)} -> {pod}")
        on_status(entry, state=TunnelState.ACTIVE, local_address=local, last_error=None)

    def close(self, entry):
        with self._lock:
            tunnel = self._tunnels.pop(id(entry), None)
        if tunnel is not None:
            self._teardown(tunnel)

    def shutdown(self):
        with self._lock:
            tunnels = list(self._tunnels.values())
            self._tunnels.clear()
        for tunnel in tunnels:
            self._teardown(tunnel)

    def _ready_pod(self, service):
        try:
            pod = self.resolver.first_ready_pod(service.name, service.namespace)
        except ResolutionError as e:
            raise TransportError(str(e)) from e
        if pod is None:
            raise TransportError(f"no ready pods backing {service}")
        return pod

    def _current_pod(self, tunnel):
        """
        Pod the next connection should reach.

        Headless entries are pinned to their endpoint. Ordinary entries look
        up a ready pod again after the previous one failed.
        """
        pod = tunnel.pod
        if pod is None:
            pod = self._ready_pod(tunnel.entry.service)
            tunnel.pod = pod
        return pod

    def _teardown(self, tunnel):
        tunnel.stop.set()
        for listener in tunnel.listeners:
            listener.close()
        for thread in tunnel.threads:
            if thread.is_alive():
                thread.join(timeout=2)
        self.addresses.release(tunnel.address)

    def _target_ports(self, entry):
        """
        Map each service port to the container port it routes to.

        Named target ports cannot be resolved without reading the pod spec,
        so those fall back to the service port.
        """
        service = entry.service
        try:
            svc = self.core_v1.read_namespaced_service(name=service.name, namespace=service.namespace)
        except ApiException as e:
            logger.debug(f"Could not read service {service}: {e.reason}")
            return [(port, port) for port in entry.status.ports]

        mapping = {}
        for p in svc.spec.ports or []:
            if isinstance(p.target_port, int):
                mapping[p.port] = p.target_port
        return [(port, mapping.get(port, port)) for port in entry.status.ports]

    def _accept_loop(self, tunnel, listener, port, on_status):
        while not tunnel.stop.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                # Listener closed by teardown.
                return

            threading.Thread(
                target=self._serve,
                args=(tunnel, conn, port, on_status),
                daemon=True,
            ).start()

    def _serve(self, tunnel, conn, port, on_status):
        remote = None
        pod = tunnel.pod
        try:
            pod = self._current_pod(tunnel)
            pf = portforward(
                self.core_v1.connect_get_namespaced_pod_portforward,
                pod.pod_name,
                pod.pod_namespace,
                ports=str(port),
            )
            remote = pf.socket(port)
            remote.setblocking(True)
            on_status(tunnel.entry, state=TunnelState.ACTIVE, last_error=None)

            _relay(conn, remote, tunnel.stop)

            error = pf.error(port)
            if error:
                raise TransportError(error)
        except (ApiException, TransportError, OSError) as e:
            logger.warning(f"Port-forward to {pod or tunnel.entry.service}:{port} failed: {e}")
            if tunnel.entry.endpoint is None:
                tunnel.pod = None
            on_status(tunnel.entry, state=TunnelState.RECONNECTING, last_error=str(e))
        finally:
            conn.close()
            # Closing the last local socket ends the websocket session.
            if remote is not None:
                remote.close()
