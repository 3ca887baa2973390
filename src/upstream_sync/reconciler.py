"""Single reconciliation cycle: read cluster state, render, reload.

A cycle holds no state between runs.  It re-reads the Service port and the
node list, rewrites the whole upstream block and triggers a reload, so running
it twice against an unchanged cluster produces the same file and a harmless
second reload.  Callers are expected to run cycles one at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from kubernetes.client import CoreV1Api

from .cluster import ClusterStateReader, label_selector
from .config import NodeAddress, ReconciliationConfig
from .exceptions import EmptyUpstreamSet, UpstreamSyncError
from .reload import ProxyReloadDriver, ReloadResult
from .render import NginxUpstreamRenderer, RenderResult

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileContext:
    """Cluster client handle plus the immutable process configuration."""

    core_api: CoreV1Api
    config: ReconciliationConfig


@dataclass
class CycleResult:
    port: int
    nodes: List[NodeAddress]
    render: RenderResult
    reload: ReloadResult


class Reconciler:
    """Drive one cycle at a time against the configured Service."""

    def __init__(
        self,
        context: ReconcileContext,
        reader: Optional[ClusterStateReader] = None,
        renderer: Optional[NginxUpstreamRenderer] = None,
        reload_driver: Optional[ProxyReloadDriver] = None,
    ) -> None:
        config = context.config
        self._context = context
        self._reader = reader or ClusterStateReader(context.core_api)
        self._renderer = renderer or NginxUpstreamRenderer(
            config.output_path, upstream_name=config.upstream_name
        )
        self._reload_driver = reload_driver or ProxyReloadDriver(
            config.reload_command, timeout=config.reload_timeout
        )

    @property
    def config(self) -> ReconciliationConfig:
        return self._context.config

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def run_cycle(self, reason: str = "manual") -> CycleResult:
        """Run one cycle, raising the first failure.

        Render happens before reload, so a failed reload leaves the new file
        in place while a failed read or render leaves the previous one.
        """

        config = self.config
        LOG.debug("starting reconciliation cycle (%s)", reason)

        port = self._reader.resolve_port(
            config.namespace, config.service_name, config.port_name
        )
        LOG.info("Using port %d for service %s", port, config.service_ref)

        nodes = self._reader.list_node_addresses(
            config.node_label_key,
            config.node_label_value,
            config.ignore_not_ready,
        )
        if not nodes:
            selector = label_selector(config.node_label_key, config.node_label_value)
            raise EmptyUpstreamSet(
                f"no nodes found with label filter {selector or '<none>'}"
                f" (ignore_not_ready={config.ignore_not_ready})"
            )
        LOG.info("Found nodes: %s", [node.address for node in nodes])

        render = self._renderer.render(port, nodes)
        LOG.info("Nginx config updated at %s", render.output_path)

        reload = self._reload_driver.reload()
        LOG.info("Nginx reloaded successfully")

        return CycleResult(port=port, nodes=nodes, render=render, reload=reload)

    def reconcile(self, reason: str = "manual") -> bool:
        """Run a cycle and report failures instead of raising them."""

        config = self.config
        try:
            self.run_cycle(reason)
        except UpstreamSyncError as exc:
            LOG.error(
                "failed to update nginx config for service %s "
                "(path=%s, reload=%s): %s",
                config.service_ref,
                config.output_path,
                " ".join(config.reload_command),
                exc,
            )
            return False
        return True
