import sys
from typing import Dict, List, Optional

import pytest
from kubernetes.client import (
    ApiException,
    V1Node,
    V1NodeAddress,
    V1NodeCondition,
    V1NodeList,
    V1NodeStatus,
    V1ObjectMeta,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
)


def build_node(
    name: str,
    address: Optional[str],
    ready: Optional[bool] = True,
    labels: Optional[Dict[str, str]] = None,
) -> V1Node:
    conditions = []
    if ready is not None:
        conditions.append(
            V1NodeCondition(type="Ready", status="True" if ready else "False")
        )
    addresses = [V1NodeAddress(type="Hostname", address=name)]
    if address is not None:
        addresses.append(V1NodeAddress(type="InternalIP", address=address))
    return V1Node(
        metadata=V1ObjectMeta(name=name, labels=labels or {}),
        status=V1NodeStatus(conditions=conditions, addresses=addresses),
    )


def build_service(name: str, ports: List[V1ServicePort]) -> V1Service:
    return V1Service(
        metadata=V1ObjectMeta(name=name, namespace="ns"),
        spec=V1ServiceSpec(ports=ports),
    )


class FakeCoreV1Api:
    """Just enough of ``CoreV1Api`` for the cluster reader."""

    def __init__(self) -> None:
        self.services: Dict[tuple, V1Service] = {}
        self.nodes: List[V1Node] = []
        self.service_error: Optional[Exception] = None
        self.node_error: Optional[Exception] = None
        self.node_calls: List[dict] = []

    def add_service(self, namespace: str, service: V1Service) -> None:
        self.services[(namespace, service.metadata.name)] = service

    def read_namespaced_service(self, name: str, namespace: str, **kwargs):
        if self.service_error is not None:
            raise self.service_error
        try:
            return self.services[(namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def list_node(self, **kwargs):
        self.node_calls.append(kwargs)
        if self.node_error is not None:
            raise self.node_error
        selector = kwargs.get("label_selector")
        items = [node for node in self.nodes if _matches(node, selector)]
        return V1NodeList(items=items)


def _matches(node: V1Node, selector: Optional[str]) -> bool:
    if not selector:
        return True
    labels = node.metadata.labels or {}
    if "=" in selector:
        key, value = selector.split("=", 1)
        return labels.get(key) == value
    return selector in labels


@pytest.fixture
def core_api() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def make_node():
    return build_node


@pytest.fixture
def make_service():
    return build_service


@pytest.fixture
def python_cmd():
    """Build a reload command that runs an inline Python snippet."""

    def _build(code: str) -> List[str]:
        return [sys.executable, "-c", code]

    return _build
