"""Shared constants for the proxier.

Centralizes the reserved service name, the headless cluster IP sentinel
and the DNS suffixes used to build hostname aliases.
"""

# The cluster's own API service. Never forwarded.
RESERVED_SERVICE_NAME: str = "kubernetes"

# spec.clusterIP value of a headless service.
HEADLESS_CLUSTER_IP: str = "None"

# Endpoint target_ref kind that can be forwarded to.
POD_KIND: str = "Pod"

# Progressively qualified suffixes appended after "<name>.<namespace>".
DNS_SUFFIXES: list[str] = ["", ".svc", ".svc.cluster", ".svc.cluster.local"]

DEFAULT_BIND_NETWORK: str = "127.0.0.0/24"
# Server-side watch timeout; bounds how long cancellation takes to reach the watcher.
DEFAULT_WATCH_TIMEOUT: int = 10
DEFAULT_POLL_INTERVAL: float = 0.5
# Pause between endpoint lookup attempts.
DEFAULT_RESOLVE_RETRY_DELAY: float = 1.0
DEFAULT_LOG_LEVEL: str = "INFO"
