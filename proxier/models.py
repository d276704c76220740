"""
Data model shared by the classifier, the worker and the query surface.

Intents form a closed union of two frozen dataclasses. Statuses are
immutable; the transport replaces a status record rather than mutating it,
so a reader holding a snapshot never sees a half-updated entry.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from kubernetes import client


class Topology(Enum):
    """How traffic reaches a service."""

    ORDINARY = "ordinary"
    DECENTRALIZED = "decentralized"


class NotificationKind(Enum):
    ADDED = "added"
    DELETED = "deleted"


class TunnelState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class ServiceIdentity:
    """Stable key for all tunnel bookkeeping."""

    name: str
    namespace: str
    topology: Topology = Topology.ORDINARY

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class EndpointTarget:
    """One backing pod of a headless service."""

    pod_name: str
    pod_namespace: str

    def __str__(self):
        return f"{self.pod_namespace}/{self.pod_name}"


@dataclass(frozen=True)
class ServiceNotification:
    kind: NotificationKind
    service: client.V1Service


@dataclass(frozen=True)
class CreateIntent:
    service: ServiceIdentity
    ports: tuple[int, ...]
    hostnames: tuple[str, ...]
    endpoint: Optional[EndpointTarget] = None


@dataclass(frozen=True)
class DeleteIntent:
    service: ServiceIdentity


TunnelIntent = Union[CreateIntent, DeleteIntent]


@dataclass(frozen=True)
class TunnelStatus:
    """
    Status record for one tunnel.

    Owned by the transport. The state table stores and surfaces it without
    looking inside.

    Attributes:
        state: Connection state
        last_error: Message of the most recent failure, if any
        local_address: "host:port" list the tunnel is bound to
        ports: Remote ports being forwarded
        hostnames: Hostname aliases for the tunnel
    """

    state: TunnelState = TunnelState.PENDING
    last_error: Optional[str] = None
    local_address: tuple[str, ...] = ()
    ports: tuple[int, ...] = ()
    hostnames: tuple[str, ...] = ()

    def evolve(self, **changes):
        return replace(self, **changes)


@dataclass(eq=False)
class TunnelEntry:
    """One active or pending tunnel. Compared and hashed by identity."""

    service: ServiceIdentity
    endpoint: Optional[EndpointTarget]
    status: TunnelStatus = field(default_factory=TunnelStatus)

    def key(self):
        return (self.service, self.endpoint)


@dataclass(frozen=True)
class ServiceStatus:
    """
    One row of the status listing.

    statuses holds one record per tunnel: a single one for an ordinary
    service, one per pod for a headless service.
    """

    service: ServiceIdentity
    statuses: tuple[TunnelStatus, ...] = ()
    resolution_error: Optional[str] = None
