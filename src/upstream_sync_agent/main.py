"""Entry point for the nginx upstream sync agent."""

from __future__ import annotations

import argparse
import functools
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from upstream_sync import ReconcileContext, Reconciler
from upstream_sync.cluster import ClusterStateReader
from upstream_sync.exceptions import UpstreamSyncError

from .config import DEFAULT_CONFIG_PATH, resolve_config
from .kube import load_core_api
from .watchers import NodeMembershipWatcher

LOG = logging.getLogger(__name__)

SHUTDOWN_GRACE = 10.0


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep an nginx upstream block in sync with Kubernetes nodes"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--namespace", help="Kubernetes namespace of the service")
    parser.add_argument("--service", help="Kubernetes service name")
    parser.add_argument("--port-name", help="Service port name (optional)")
    parser.add_argument("--nginx-conf", help="Path to nginx upstream conf file")
    parser.add_argument(
        "--reload-cmd", help="Command to reload nginx (space separated)"
    )
    parser.add_argument(
        "--node-label-key", help="Node label key to filter nodes (optional)"
    )
    parser.add_argument(
        "--node-label-val", help="Node label value to filter nodes (optional)"
    )
    parser.add_argument(
        "--ignore-not-ready",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Ignore nodes that are not Ready (default: false)",
    )
    parser.add_argument("--upstream-name", help="Name of the nginx upstream block")
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Kubeconfig to use when not running inside the cluster",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle and exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    try:
        agent_config = resolve_config(args)
        config = agent_config.to_reconciliation_config()
    except ValueError as exc:
        LOG.error("invalid configuration: %s", exc)
        return 2

    try:
        core_api = load_core_api(args.kubeconfig)
    except Exception:
        LOG.exception("failed to create k8s client")
        return 1

    reconciler = Reconciler(ReconcileContext(core_api=core_api, config=config))

    try:
        reconciler.run_cycle("startup")
    except UpstreamSyncError as exc:
        LOG.error(
            "initial nginx config update failed for service %s: %s",
            config.service_ref,
            exc,
        )
        return 1

    if args.once:
        return 0

    reader = ClusterStateReader(core_api)
    stop_event = Event()
    watcher = NodeMembershipWatcher(
        subscribe=functools.partial(
            reader.open_node_subscription, agent_config.watch_timeout
        ),
        reconciler=reconciler,
        stop_event=stop_event,
        backoff=agent_config.watch_backoff,
    )

    def _shutdown(signum, frame):
        LOG.info("Received signal %s, exiting...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.start()
    try:
        while not stop_event.is_set() and watcher.is_alive():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    watcher.request_stop()
    watcher.join(SHUTDOWN_GRACE)
    if watcher.is_alive():
        LOG.warning("node watcher did not stop within %ss", SHUTDOWN_GRACE)

    LOG.info("nginx upstream sync stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
