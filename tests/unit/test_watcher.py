"""Service watcher tests"""
import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import ProtocolError

from proxier.models import NotificationKind
from proxier.watcher import ResourceVersionExpired, ServiceWatcher
from tests.helpers.k8s import gone_event, make_headless_service, make_service, watch_event
from tests.helpers.waits import ListChannel, wait_for


def summary(channel):
    return [(n.kind, n.service.metadata.name) for n in channel.items]


@pytest.fixture
def channel():
    return ListChannel()


@pytest.fixture
def watcher(core_v1, channel, cancel, watch_factory):
    return ServiceWatcher(core_v1, channel, cancel, timeout_seconds=1, retry_interval=0.01, watch_factory=watch_factory)


@pytest.mark.quick
def test_relist_announces_every_service(core_v1, watcher, channel):
    core_v1.add_service(make_service("web"))
    core_v1.add_service(make_headless_service("db", "ns"))

    version = watcher.relist()

    assert version == "100"
    assert sorted(summary(channel)) == [
        (NotificationKind.ADDED, "db"),
        (NotificationKind.ADDED, "web"),
    ]


@pytest.mark.quick
def test_relist_emits_difference(core_v1, watcher, channel):
    core_v1.add_service(make_service("web"))
    core_v1.add_service(make_service("api"))
    watcher.relist()
    channel.items.clear()

    core_v1.remove_service("default", "api")
    core_v1.add_service(make_service("cache"))
    watcher.relist()

    assert summary(channel) == [
        (NotificationKind.DELETED, "api"),
        (NotificationKind.ADDED, "cache"),
    ]


@pytest.mark.quick
def test_follow_forwards_adds_and_deletes(watcher, channel, watch_factory):
    web = make_service("web", resource_version="101")
    watch_factory.push([
        watch_event("ADDED", web),
        watch_event("MODIFIED", make_service("web", resource_version="102")),
        watch_event("DELETED", make_service("web", resource_version="103")),
    ])

    version = watcher.follow("100")

    assert version == "103"
    assert summary(channel) == [
        (NotificationKind.ADDED, "web"),
        (NotificationKind.DELETED, "web"),
    ]
    assert watch_factory.stream_calls[0]["resource_version"] == "100"
    assert watch_factory.stream_calls[0]["timeout_seconds"] == 1


@pytest.mark.quick
def test_known_service_is_not_reannounced(core_v1, watcher, channel, watch_factory):
    core_v1.add_service(make_service("web"))
    watcher.relist()
    watch_factory.push([watch_event("ADDED", make_service("web", resource_version="101"))])

    watcher.follow("100")

    assert summary(channel) == [(NotificationKind.ADDED, "web")]


@pytest.mark.quick
def test_gone_error_event_raises_expired(watcher, watch_factory):
    watch_factory.push([gone_event()])

    with pytest.raises(ResourceVersionExpired):
        watcher.follow("1")


@pytest.mark.quick
def test_namespace_scopes_list_calls(core_v1, channel, cancel, watch_factory):
    core_v1.add_service(make_service("web", "team-a"))
    core_v1.add_service(make_service("web", "team-b"))
    watcher = ServiceWatcher(core_v1, channel, cancel, namespace="team-a", watch_factory=watch_factory)

    watcher.relist()

    assert [n.service.metadata.namespace for n in channel.items] == ["team-a"]
    assert core_v1.calls_to("list_namespaced_service")[0]["namespace"] == "team-a"


@pytest.mark.concurrency
def test_run_relists_after_expiry_and_stops_on_cancel(core_v1, watcher, channel, cancel, watch_factory):
    core_v1.add_service(make_service("web"))
    watch_factory.push([gone_event()])
    watcher.start()

    # Initial list, then a relist after the 410 that finds nothing new.
    assert wait_for(lambda: len(core_v1.calls_to("list_service_for_all_namespaces")) >= 2)
    assert summary(channel) == [(NotificationKind.ADDED, "web")]

    cancel.cancel()
    assert watcher.done.wait(5)


@pytest.mark.concurrency
def test_run_retries_after_api_error(core_v1, channel, cancel, watch_factory):
    failures = [ApiException(status=500, reason="boom")]
    list_services = core_v1.list_service_for_all_namespaces

    def flaky_list(**kwargs):
        if failures:
            raise failures.pop()
        return list_services(**kwargs)

    core_v1.list_service_for_all_namespaces = flaky_list
    core_v1.add_service(make_service("web"))
    watcher = ServiceWatcher(core_v1, channel, cancel, retry_interval=0.01, watch_factory=watch_factory)
    watcher.start()

    assert wait_for(lambda: summary(channel) == [(NotificationKind.ADDED, "web")])
    cancel.cancel()
    assert watcher.done.wait(5)


@pytest.mark.concurrency
def test_run_resumes_after_dropped_connection(core_v1, watcher, channel, cancel, watch_factory):
    web = make_service("web", resource_version="101")
    watch_factory.push([watch_event("ADDED", web), ProtocolError("Response ended prematurely")])
    watch_factory.push([watch_event("ADDED", make_service("late", resource_version="102"))])
    watcher.start()

    assert wait_for(lambda: summary(channel) == [
        (NotificationKind.ADDED, "web"),
        (NotificationKind.ADDED, "late"),
    ])
    assert not watcher.done.is_set()
    # Resumed from the last event instead of relisting.
    assert watch_factory.stream_calls[1]["resource_version"] == "101"
    assert len(core_v1.calls_to("list_service_for_all_namespaces")) == 1

    cancel.cancel()
    assert watcher.done.wait(5)


@pytest.mark.concurrency
def test_run_retries_after_socket_error_on_list(core_v1, channel, cancel, watch_factory):
    failures = [ConnectionResetError("connection reset by peer")]
    list_services = core_v1.list_service_for_all_namespaces

    def flaky_list(**kwargs):
        if failures:
            raise failures.pop()
        return list_services(**kwargs)

    core_v1.list_service_for_all_namespaces = flaky_list
    core_v1.add_service(make_service("web"))
    watcher = ServiceWatcher(core_v1, channel, cancel, retry_interval=0.01, watch_factory=watch_factory)
    watcher.start()

    assert wait_for(lambda: summary(channel) == [(NotificationKind.ADDED, "web")])
    cancel.cancel()
    assert watcher.done.wait(5)
