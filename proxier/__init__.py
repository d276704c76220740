"""
Service port-forwarding for Kubernetes clusters.

Watches every service in a cluster and keeps a local port-forward open to
each one: a single tunnel for an ordinary service, one per pod for a
headless service.

Submodules:
    - handlers: Service event classification into tunnel intents
    - worker: Tunnel state table and the intent-applying worker
    - proxier: Orchestrator and status listing
    - watcher: Service list/watch loop
    - transport: Port-forward transport over the Kubernetes API
    - endpoints: Endpoint resolution for headless services
    - channel: Unbuffered handoff channel and cancellation token
    - config: Environment-driven configuration
"""

from proxier.errors import (
    NotRunningError,
    ProxierError,
    ResolutionError,
    SetupError,
    TransportError,
)
from proxier.models import (
    CreateIntent,
    DeleteIntent,
    EndpointTarget,
    NotificationKind,
    ServiceIdentity,
    ServiceNotification,
    ServiceStatus,
    Topology,
    TunnelEntry,
    TunnelState,
    TunnelStatus,
)
from proxier.handlers import classify
from proxier.proxier import Proxier, ProxierState

__all__ = [
    # orchestrator
    'Proxier',
    'ProxierState',
    'classify',
    # models
    'CreateIntent',
    'DeleteIntent',
    'EndpointTarget',
    'NotificationKind',
    'ServiceIdentity',
    'ServiceNotification',
    'ServiceStatus',
    'Topology',
    'TunnelEntry',
    'TunnelState',
    'TunnelStatus',
    # errors
    'NotRunningError',
    'ProxierError',
    'ResolutionError',
    'SetupError',
    'TransportError',
]
