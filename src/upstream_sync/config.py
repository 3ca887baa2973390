"""Data structures shared by the reconciliation components.

Everything here is immutable: a :class:`ReconciliationConfig` is built once at
startup and node/upstream values are recomputed from the cluster on every
cycle, never patched in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from .exceptions import EmptyUpstreamSet


DEFAULT_NAMESPACE = "default"
DEFAULT_UPSTREAM_NAME = "backend"
DEFAULT_NGINX_CONF = Path("/etc/nginx/conf.d/upstream.conf")
DEFAULT_RELOAD_COMMAND: Tuple[str, ...] = ("nginx", "-s", "reload")


@dataclass(frozen=True)
class ReconciliationConfig:
    """Settings for one sync process.

    Attributes
    ----------
    namespace / service_name:
        Identity of the Service whose port the upstream servers use.
    port_name:
        Name of the Service port to expose.  Empty means "first port".
    node_label_key / node_label_value:
        Optional node label filter.  A key without a value only requires the
        label to be present.
    ignore_not_ready:
        Drop nodes whose ``Ready`` condition is not ``True``.
    output_path:
        File holding the rendered ``upstream`` block.
    reload_command:
        Argument vector executed after every successful render.
    """

    service_name: str
    namespace: str = DEFAULT_NAMESPACE
    port_name: str = ""
    node_label_key: str = ""
    node_label_value: str = ""
    ignore_not_ready: bool = False
    output_path: Path = DEFAULT_NGINX_CONF
    reload_command: Sequence[str] = DEFAULT_RELOAD_COMMAND
    upstream_name: str = DEFAULT_UPSTREAM_NAME
    reload_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.service_name:
            raise ValueError("service name must not be empty")

    @property
    def service_ref(self) -> str:
        return f"{self.namespace}/{self.service_name}"


@dataclass(frozen=True)
class NodeAddress:
    """Internal address of a node as seen during one cycle."""

    name: str
    address: str
    ready: bool


@dataclass(frozen=True)
class UpstreamServer:
    address: str
    port: int

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class UpstreamSet:
    """Ordered, non-empty list of servers for one ``upstream`` block."""

    name: str
    servers: Tuple[UpstreamServer, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.servers:
            raise EmptyUpstreamSet(f"upstream '{self.name}' has no servers")

    @classmethod
    def build(
        cls, name: str, port: int, nodes: Iterable[NodeAddress]
    ) -> "UpstreamSet":
        # Listing order is kept as-is; nginx does not care about member order.
        servers = tuple(UpstreamServer(node.address, port) for node in nodes)
        return cls(name=name, servers=servers)
