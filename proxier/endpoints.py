"""Endpoint resolution for services."""
import logging

from kubernetes.client.rest import ApiException

from proxier.constants import POD_KIND
from proxier.errors import ResolutionError
from proxier.models import EndpointTarget

logger = logging.getLogger(__name__)


class EndpointResolver:
    """Looks up the ready pod endpoints behind a service."""

    def __init__(self, core_v1):
        self.core_v1 = core_v1

    def resolve(self, name, namespace):
        """
        Get one EndpointTarget per ready address backed by a pod.

        Addresses without a target_ref, or whose target_ref is not a Pod,
        are skipped. not_ready_addresses are never considered.

        Args:
            name: Service name (Endpoints objects share the service's name)
            namespace: Service namespace

        Returns:
            list: EndpointTarget per pod address, in subset/address order

        Raises:
            ResolutionError: If the Endpoints object cannot be read
        """
        try:
            endpoints = self.core_v1.read_namespaced_endpoints(name=name, namespace=namespace)
        except ApiException as e:
            raise ResolutionError(namespace, name, e.reason or e.status) from e

        targets = []
        for subset in endpoints.subsets or []:
            for address in subset.addresses or []:
                ref = address.target_ref
                if ref is None or ref.kind != POD_KIND:
                    continue
                targets.append(EndpointTarget(ref.name, ref.namespace or namespace))

        logger.debug(f"Resolved {len(targets)} pod endpoint(s) for {namespace}/{name}")
        return targets

    def first_ready_pod(self, name, namespace):
        """
        Get the first ready pod backing a service, or None.

        Used by the transport to pick a pod for an ordinary service.
        """
        targets = self.resolve(name, namespace)
        return targets[0] if targets else None
