"""Keep an nginx upstream block in sync with Kubernetes nodes.

The package holds the pieces of a single reconciliation cycle:

* :mod:`upstream_sync.cluster` resolves the exposed Service port and the node
  addresses that should receive traffic;
* :mod:`upstream_sync.render` writes the ``upstream`` block atomically;
* :mod:`upstream_sync.reload` runs the proxy's reload command; and
* :mod:`upstream_sync.reconciler` chains them together.

Watching the cluster and wiring the process lives in
:mod:`upstream_sync_agent`, so this package can be unit tested without a
running cluster or nginx binary.
"""

from .config import NodeAddress, ReconciliationConfig, UpstreamSet  # noqa: F401
from .reconciler import ReconcileContext, Reconciler  # noqa: F401

__all__ = [
    "NodeAddress",
    "ReconcileContext",
    "ReconciliationConfig",
    "Reconciler",
    "UpstreamSet",
]
