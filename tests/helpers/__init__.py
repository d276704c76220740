"""
Test helpers for the proxier test suite.

Submodules:
    - k8s: Kubernetes model builders, FakeCoreV1 and a scripted watch
    - transport: Recording transport and a fake port-forward session
    - waits: Polling helpers for threaded tests
"""

from tests.helpers.k8s import (
    FakeCoreV1,
    FakeWatchFactory,
    make_service,
    make_headless_service,
    make_address,
    make_endpoints,
    make_pod_endpoints,
    watch_event,
    gone_event,
)

from tests.helpers.transport import (
    FakePortForward,
    RecordingTransport,
    StatusRecorder,
    free_port,
    recording_transport_factory,
)

from tests.helpers.waits import (
    ListChannel,
    wait_for,
)

__all__ = [
    # k8s
    'FakeCoreV1',
    'FakeWatchFactory',
    'make_service',
    'make_headless_service',
    'make_address',
    'make_endpoints',
    'make_pod_endpoints',
    'watch_event',
    'gone_event',
    # transport
    'FakePortForward',
    'RecordingTransport',
    'StatusRecorder',
    'free_port',
    'recording_transport_factory',
    # waits
    'ListChannel',
    'wait_for',
]
