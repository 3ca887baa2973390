import threading
import time

from kubernetes.client import ApiException

from upstream_sync import cluster
from upstream_sync.cluster import ClusterStateReader, NodeEvent
from upstream_sync.exceptions import SubscriptionError
from upstream_sync_agent.watchers import NodeMembershipWatcher, WatcherState


class FakeSubscription:
    def __init__(self, events, error=None):
        self.events = list(events)
        self.error = error
        self.close_calls = 0

    def __iter__(self):
        yield from self.events
        if self.error is not None:
            raise self.error

    def close(self):
        self.close_calls += 1


class BlockingSubscription:
    """Delivers nothing until closed, like an idle watch stream."""

    def __init__(self):
        self.released = threading.Event()

    def __iter__(self):
        self.released.wait(5)
        return iter(())

    def close(self):
        self.released.set()


class RecordingReconciler:
    def __init__(self, result=True, on_call=None):
        self.reasons = []
        self.result = result
        self.on_call = on_call

    def reconcile(self, reason="manual"):
        self.reasons.append(reason)
        if self.on_call is not None:
            self.on_call()
        return self.result


class RecordingEvent(threading.Event):
    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


def scripted(stop_event, *subscriptions):
    """Return a subscribe callable serving ``subscriptions`` then stopping."""

    queue = list(subscriptions)
    calls = []

    def subscribe():
        calls.append(time.monotonic())
        if not queue:
            stop_event.set()
            raise SubscriptionError("no more subscriptions")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    subscribe.calls = calls
    return subscribe


def test_reconnects_after_stream_closes():
    stop_event = threading.Event()
    first = FakeSubscription([NodeEvent("ADDED", "a"), NodeEvent("MODIFIED", "b")])
    second = FakeSubscription([NodeEvent("DELETED", "a")])
    subscribe = scripted(stop_event, first, second)
    reconciler = RecordingReconciler()
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=60)

    started = time.monotonic()
    watcher.run()

    assert time.monotonic() - started < 5
    assert reconciler.reasons == [
        "node ADDED a",
        "node MODIFIED b",
        "node DELETED a",
    ]
    assert len(subscribe.calls) == 3
    assert first.close_calls == 1
    assert second.close_calls == 1
    assert watcher.state is WatcherState.DISCONNECTED


def test_reconnects_after_stream_error():
    stop_event = threading.Event()
    broken = FakeSubscription(
        [NodeEvent("ADDED", "a")], error=SubscriptionError("stream reset")
    )
    healthy = FakeSubscription([NodeEvent("MODIFIED", "a")])
    subscribe = scripted(stop_event, broken, healthy)
    reconciler = RecordingReconciler()
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=60)

    watcher.run()

    assert reconciler.reasons == ["node ADDED a", "node MODIFIED a"]
    assert broken.close_calls == 1


def test_failed_cycles_keep_the_subscription():
    stop_event = threading.Event()
    events = [NodeEvent("MODIFIED", f"n{i}") for i in range(3)]
    subscription = FakeSubscription(events)
    subscribe = scripted(stop_event, subscription)
    reconciler = RecordingReconciler(result=False)
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=60)

    watcher.run()

    assert len(reconciler.reasons) == 3
    assert subscription.close_calls == 1
    assert len(subscribe.calls) == 2


def test_subscription_failure_waits_for_backoff():
    stop_event = RecordingEvent()
    subscription = FakeSubscription([NodeEvent("ADDED", "a")])
    subscribe = scripted(
        stop_event,
        SubscriptionError("connection refused"),
        SubscriptionError("connection refused"),
        subscription,
    )
    reconciler = RecordingReconciler()
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=5.0)

    watcher.run()

    # Two failed attempts, then the final "no more subscriptions" failure.
    assert stop_event.waits == [5.0, 5.0, 5.0]
    assert reconciler.reasons == ["node ADDED a"]


def test_cancellation_interrupts_backoff():
    stop_event = threading.Event()
    attempted = threading.Event()

    def subscribe():
        attempted.set()
        raise SubscriptionError("connection refused")

    watcher = NodeMembershipWatcher(
        subscribe, RecordingReconciler(), stop_event, backoff=30
    )
    watcher.start()
    assert attempted.wait(2)

    started = time.monotonic()
    watcher.request_stop()
    watcher.join(2)

    assert not watcher.is_alive()
    assert time.monotonic() - started < 2


def test_request_stop_releases_active_subscription():
    stop_event = threading.Event()
    subscription = BlockingSubscription()
    subscribed = threading.Event()

    def subscribe():
        subscribed.set()
        return subscription

    watcher = NodeMembershipWatcher(
        subscribe, RecordingReconciler(), stop_event, backoff=30
    )
    watcher.start()
    assert subscribed.wait(2)

    watcher.request_stop()
    watcher.join(2)

    assert not watcher.is_alive()
    assert subscription.released.is_set()
    assert watcher.state is WatcherState.DISCONNECTED


def test_events_after_stop_are_not_processed():
    stop_event = threading.Event()
    subscription = FakeSubscription(
        [NodeEvent("ADDED", "a"), NodeEvent("ADDED", "b")]
    )
    subscribe = scripted(stop_event, subscription)
    reconciler = RecordingReconciler(on_call=stop_event.set)
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=60)

    watcher.run()

    assert reconciler.reasons == ["node ADDED a"]
    assert subscription.close_calls == 1
    assert len(subscribe.calls) == 1


def test_stream_failing_before_any_event_waits_for_backoff():
    stop_event = RecordingEvent()
    rejected = FakeSubscription([], error=SubscriptionError("403 Forbidden"))
    subscription = FakeSubscription([NodeEvent("ADDED", "a")])
    subscribe = scripted(stop_event, rejected, subscription)
    reconciler = RecordingReconciler()
    watcher = NodeMembershipWatcher(subscribe, reconciler, stop_event, backoff=5.0)

    watcher.run()

    # Rejected watch, then the final "no more subscriptions" failure.
    assert stop_event.waits == [5.0, 5.0]
    assert rejected.close_calls >= 1
    assert reconciler.reasons == ["node ADDED a"]


def test_rejected_watch_request_is_not_retried_in_a_loop(core_api, monkeypatch):
    class ForbiddenWatch:
        def stream(self, func, **kwargs):
            raise ApiException(status=403, reason="Forbidden")
            yield  # pragma: no cover

        def stop(self):
            pass

    monkeypatch.setattr(cluster.watch, "Watch", ForbiddenWatch)
    stop_event = threading.Event()
    reader = ClusterStateReader(core_api)
    watcher = NodeMembershipWatcher(
        reader.open_node_subscription, RecordingReconciler(), stop_event, backoff=5.0
    )
    watcher.start()
    time.sleep(0.5)
    watcher.request_stop()
    watcher.join(2)

    assert not watcher.is_alive()
    assert len(core_api.node_calls) == 1
