"""Node membership watcher.

The watcher alternates between two states.  While ``DISCONNECTED`` it tries
to open a node subscription, waiting ``backoff`` seconds between failed
attempts.  While ``WATCHING`` it runs one reconciliation cycle per delivered
event.  When the stream ends or breaks the subscription is dropped and a new
one is opened straight away; there is no resume token to continue from, and a
fresh stream costs no more than the cycles it triggers.  A stream that fails
before delivering any event counts as a failed attempt and waits for the
backoff too, since the watch request itself is only sent on the first read.
"""

from __future__ import annotations

import enum
import logging
from threading import Event, Lock, Thread
from typing import Callable, Iterator, Optional, Protocol

from upstream_sync.cluster import NodeEvent
from upstream_sync.exceptions import SubscriptionError

LOG = logging.getLogger(__name__)

DEFAULT_BACKOFF = 5.0


class Subscription(Protocol):
    def __iter__(self) -> Iterator[NodeEvent]: ...

    def close(self) -> None: ...


class CycleRunner(Protocol):
    def reconcile(self, reason: str = ...) -> bool: ...


class WatcherState(enum.Enum):
    DISCONNECTED = "disconnected"
    WATCHING = "watching"


class NodeMembershipWatcher(Thread):
    """Reconcile on every node event until ``stop_event`` is set."""

    def __init__(
        self,
        subscribe: Callable[[], Subscription],
        reconciler: CycleRunner,
        stop_event: Event,
        backoff: float = DEFAULT_BACKOFF,
    ) -> None:
        super().__init__(name="node-watcher", daemon=True)
        self._subscribe = subscribe
        self._reconciler = reconciler
        self._stop_event = stop_event
        self._backoff = backoff
        self._state = WatcherState.DISCONNECTED
        self._lock = Lock()
        self._subscription: Optional[Subscription] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    def request_stop(self) -> None:
        """Stop the loop and release the active subscription, if any."""

        self._stop_event.set()
        with self._lock:
            subscription = self._subscription
        if subscription is not None:
            subscription.close()

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                subscription = self._connect()
                if subscription is None:
                    continue
                self._consume(subscription)
        finally:
            self._release()
            LOG.info("Stopped watching nodes")

    def _connect(self) -> Optional[Subscription]:
        try:
            subscription = self._subscribe()
        except SubscriptionError as exc:
            LOG.warning(
                "failed to start node watcher: %s, retrying in %ss", exc, self._backoff
            )
            self._stop_event.wait(self._backoff)
            return None

        with self._lock:
            if self._stop_event.is_set():
                subscription.close()
                return None
            self._subscription = subscription
        self._state = WatcherState.WATCHING
        LOG.info("Started watching nodes for changes")
        return subscription

    def _consume(self, subscription: Subscription) -> None:
        delivered = False
        try:
            for event in subscription:
                if self._stop_event.is_set():
                    break
                delivered = True
                LOG.info("Node event: %s %s", event.type, event.name)
                try:
                    self._reconciler.reconcile(f"node {event.type} {event.name}")
                except Exception:  # pragma: no cover - logged below
                    LOG.exception("reconciliation cycle raised unexpectedly")
            else:
                if not self._stop_event.is_set():
                    LOG.info("Node watch channel closed, restarting watcher")
        except SubscriptionError as exc:
            if delivered:
                LOG.warning("node watch failed: %s, restarting watcher", exc)
            else:
                # The watch request itself was rejected.
                self._release()
                LOG.warning(
                    "failed to start node watcher: %s, retrying in %ss",
                    exc,
                    self._backoff,
                )
                self._stop_event.wait(self._backoff)
        finally:
            self._release()

    def _release(self) -> None:
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.close()
        self._state = WatcherState.DISCONNECTED
