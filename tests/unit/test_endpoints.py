"""Endpoint resolution tests"""
import pytest

from proxier.endpoints import EndpointResolver
from proxier.errors import ResolutionError
from proxier.models import EndpointTarget
from tests.helpers.k8s import make_address, make_endpoints, make_pod_endpoints


@pytest.mark.quick
def test_resolve_returns_pods_across_subsets(core_v1):
    core_v1.add_endpoints(make_endpoints("db", "ns", [
        [make_address("db-0", "ns", ip="10.1.0.1")],
        [make_address("db-1", "ns", ip="10.1.0.2"), make_address("db-2", "ns", ip="10.1.0.3")],
    ]))

    targets = EndpointResolver(core_v1).resolve("db", "ns")

    assert targets == [
        EndpointTarget("db-0", "ns"),
        EndpointTarget("db-1", "ns"),
        EndpointTarget("db-2", "ns"),
    ]


@pytest.mark.quick
def test_resolve_handles_missing_subsets(core_v1):
    core_v1.add_endpoints(make_endpoints("db", "ns", subsets=None))

    assert EndpointResolver(core_v1).resolve("db", "ns") == []


@pytest.mark.quick
def test_resolve_defaults_pod_namespace(core_v1):
    core_v1.add_endpoints(make_endpoints("db", "ns", [[make_address("db-0", namespace=None)]]))

    assert EndpointResolver(core_v1).resolve("db", "ns") == [EndpointTarget("db-0", "ns")]


@pytest.mark.quick
def test_resolve_wraps_api_errors(core_v1):
    with pytest.raises(ResolutionError) as excinfo:
        EndpointResolver(core_v1).resolve("missing", "ns")

    assert excinfo.value.namespace == "ns"
    assert excinfo.value.name == "missing"
    assert "Not Found" in str(excinfo.value)


@pytest.mark.quick
def test_first_ready_pod(core_v1):
    core_v1.add_endpoints(make_pod_endpoints("web", "default", ["web-abc", "web-def"]))
    core_v1.add_endpoints(make_endpoints("idle", "default", []))
    resolver = EndpointResolver(core_v1)

    assert resolver.first_ready_pod("web", "default") == EndpointTarget("web-abc", "default")
    assert resolver.first_ready_pod("idle", "default") is None
