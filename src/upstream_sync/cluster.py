"""Read-only queries against the Kubernetes API."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from .config import NodeAddress
from .exceptions import (
    NodeListError,
    PortLookupError,
    PortNotFound,
    SubscriptionError,
)

LOG = logging.getLogger(__name__)

NODE_READY = "Ready"
CONDITION_TRUE = "True"
INTERNAL_IP = "InternalIP"


def label_selector(key: str, value: str = "") -> Optional[str]:
    """Build the node label selector; ``None`` selects every node."""

    if not key:
        return None
    if value:
        return f"{key}={value}"
    return key


def node_is_ready(node: Any) -> bool:
    """Return True when the node's first ``Ready`` condition is ``True``."""

    status = getattr(node, "status", None)
    for condition in getattr(status, "conditions", None) or []:
        if condition.type == NODE_READY:
            return condition.status == CONDITION_TRUE
    return False


def internal_address(node: Any) -> Optional[str]:
    status = getattr(node, "status", None)
    for address in getattr(status, "addresses", None) or []:
        if address.type == INTERNAL_IP:
            return address.address
    return None


def _node_name(node: Any) -> str:
    metadata = getattr(node, "metadata", None)
    return getattr(metadata, "name", None) or "<unknown>"


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return f"{type(exc).__name__}: {exc}"


class ClusterStateReader:
    """Resolve the Service port and the node addresses behind it."""

    def __init__(self, core_api: CoreV1Api) -> None:
        self._core = core_api

    def resolve_port(
        self, namespace: str, service_name: str, port_name: str = ""
    ) -> int:
        try:
            service = self._core.read_namespaced_service(
                name=service_name, namespace=namespace
            )
        except Exception as exc:
            raise PortLookupError(
                f"service {namespace}/{service_name}: {_describe(exc)}"
            ) from exc

        spec = getattr(service, "spec", None)
        for port in getattr(spec, "ports", None) or []:
            if port_name and port.name != port_name:
                continue
            if port.node_port:
                return int(port.node_port)
            return int(port.port)
        raise PortNotFound(namespace, service_name, port_name)

    def list_node_addresses(
        self,
        label_key: str = "",
        label_value: str = "",
        ignore_not_ready: bool = False,
    ) -> List[NodeAddress]:
        selector = label_selector(label_key, label_value)
        try:
            if selector:
                nodes = self._core.list_node(label_selector=selector)
            else:
                nodes = self._core.list_node()
        except Exception as exc:
            raise NodeListError(
                f"selector {selector or '<all>'}: {_describe(exc)}"
            ) from exc

        addresses: List[NodeAddress] = []
        for node in nodes.items or []:
            name = _node_name(node)
            ready = node_is_ready(node)
            if ignore_not_ready and not ready:
                LOG.debug("skipping node %s: not ready", name)
                continue
            address = internal_address(node)
            if address is None:
                LOG.debug("skipping node %s: no %s address", name, INTERNAL_IP)
                continue
            addresses.append(NodeAddress(name=name, address=address, ready=ready))
        return addresses

    def open_node_subscription(
        self, timeout_seconds: Optional[int] = None
    ) -> "NodeSubscription":
        """Establish a watch over all nodes.

        A one-item list is issued first so that credential and connectivity
        problems surface here, as :class:`SubscriptionError`, rather than on
        the first read from the stream.
        """

        try:
            self._core.list_node(limit=1)
        except Exception as exc:
            raise SubscriptionError(
                f"failed to start node watch: {_describe(exc)}"
            ) from exc
        return NodeSubscription(self._core, timeout_seconds=timeout_seconds)


@dataclass(frozen=True)
class NodeEvent:
    type: str
    name: str


class NodeSubscription:
    """Single-use node watch stream.

    Iterating yields :class:`NodeEvent` objects until the server closes the
    stream or :meth:`close` is called.  Stream failures raise
    :class:`SubscriptionError`; the subscription is not reusable afterwards.
    """

    def __init__(
        self, core_api: CoreV1Api, timeout_seconds: Optional[int] = None
    ) -> None:
        self._core = core_api
        self._timeout = timeout_seconds
        self._watch = watch.Watch()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[NodeEvent]:
        kwargs = {}
        if self._timeout:
            kwargs["timeout_seconds"] = self._timeout
        try:
            for event in self._watch.stream(self._core.list_node, **kwargs):
                if self.closed:
                    return
                event_type = str(event.get("type", ""))
                if event_type == "ERROR":
                    raise SubscriptionError(
                        f"node watch returned an error: {event.get('raw_object')}"
                    )
                yield NodeEvent(type=event_type, name=_node_name(event.get("object")))
        except SubscriptionError:
            raise
        except Exception as exc:
            if self.closed:
                return
            raise SubscriptionError(f"node watch broke: {_describe(exc)}") from exc

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._watch.stop()
