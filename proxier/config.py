"""
Configuration for the proxier.

Values come from environment variables, with command line flags layered on
top by the CLI.

Environment Variables:
    - KUBECONFIG: Path to the kubeconfig file (default: ~/.kube/config)
    - PROXIER_CONTEXT: kubeconfig context to use
    - PROXIER_IN_CLUSTER: "true" to use the pod's service account
    - PROXIER_NAMESPACE: Only watch this namespace
    - PROXIER_BIND_NETWORK: Loopback network tunnels get addresses from
    - PROXIER_WATCH_TIMEOUT: Server-side watch timeout in seconds
    - PROXIER_POLL_INTERVAL: Channel wake-up period in seconds
    - PROXIER_RESOLVE_RETRIES: Extra endpoint lookup attempts
    - PROXIER_LOG_LEVEL: Root log level
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from proxier.constants import (
    DEFAULT_BIND_NETWORK,
    DEFAULT_LOG_LEVEL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WATCH_TIMEOUT,
)
from proxier.errors import SetupError

logger = logging.getLogger(__name__)


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name, default, cast):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise SetupError(f"{name} must be a number, got {value!r}") from e


@dataclass
class ProxierConfig:
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    in_cluster: bool = False
    namespace: Optional[str] = None
    bind_network: str = DEFAULT_BIND_NETWORK
    watch_timeout: int = DEFAULT_WATCH_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    resolve_retries: int = 0
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check numeric settings.

        Raises:
            SetupError: If a value is out of range
        """
        if self.resolve_retries < 0:
            raise SetupError(f"resolve_retries must be 0 or more, got {self.resolve_retries}")
        if self.watch_timeout <= 0:
            raise SetupError(f"watch_timeout must be positive, got {self.watch_timeout}")
        if self.poll_interval <= 0:
            raise SetupError(f"poll_interval must be positive, got {self.poll_interval}")
        return self

    @classmethod
    def from_env(cls):
        """Build a config from PROXIER_* environment variables and KUBECONFIG."""
        return cls(
            kubeconfig=os.environ.get("KUBECONFIG") or None,
            context=os.environ.get("PROXIER_CONTEXT") or None,
            in_cluster=_env_bool("PROXIER_IN_CLUSTER"),
            namespace=os.environ.get("PROXIER_NAMESPACE") or None,
            bind_network=os.environ.get("PROXIER_BIND_NETWORK", DEFAULT_BIND_NETWORK),
            watch_timeout=_env_number("PROXIER_WATCH_TIMEOUT", DEFAULT_WATCH_TIMEOUT, int),
            poll_interval=_env_number("PROXIER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL, float),
            resolve_retries=_env_number("PROXIER_RESOLVE_RETRIES", 0, int),
            log_level=os.environ.get("PROXIER_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        )

    def override(self, **values):
        """Replace fields whose override value is not None."""
        for key, value in values.items():
            if value is not None:
                setattr(self, key, value)
        return self.validate()


def load_kube_client(cfg):
    """
    Load cluster credentials and build a CoreV1Api client.

    Args:
        cfg: ProxierConfig

    Returns:
        client.CoreV1Api

    Raises:
        SetupError: If no usable configuration could be loaded
    """
    try:
        if cfg.in_cluster:
            config.load_incluster_config()
            logger.debug("Loaded in-cluster configuration")
        else:
            config.load_kube_config(config_file=cfg.kubeconfig, context=cfg.context)
            logger.debug(f"Loaded kubeconfig (context: {cfg.context or 'current'})")
    except (ConfigException, OSError) as e:
        raise SetupError(f"failed to load Kubernetes configuration: {e}") from e

    return client.CoreV1Api()
