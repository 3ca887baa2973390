"""Kubernetes client bootstrap."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from kubernetes import client, config

LOG = logging.getLogger(__name__)


def load_core_api(kubeconfig: Optional[Path] = None) -> client.CoreV1Api:
    """Return a ``CoreV1Api`` using in-cluster credentials or a kubeconfig.

    In-cluster configuration is tried first; outside a pod the kubeconfig from
    ``kubeconfig``, ``$KUBECONFIG`` or ``~/.kube/config`` is used.  Errors
    propagate since the agent cannot run without API access.
    """

    if kubeconfig is None:
        try:
            config.load_incluster_config()
            LOG.info("Loaded in-cluster Kubernetes config")
            return client.CoreV1Api()
        except config.ConfigException:
            LOG.debug("not running in a cluster, falling back to kubeconfig")

    if kubeconfig is not None:
        config.load_kube_config(config_file=str(kubeconfig))
        LOG.info("Loaded kubeconfig from %s", kubeconfig)
    else:
        # The client resolves $KUBECONFIG (possibly a path list) itself.
        config.load_kube_config()
        LOG.info(
            "Loaded kubeconfig from %s",
            os.environ.get("KUBECONFIG", "~/.kube/config"),
        )
    return client.CoreV1Api()
