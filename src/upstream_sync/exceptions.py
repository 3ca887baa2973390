"""Errors raised while reconciling the upstream block."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence


class UpstreamSyncError(Exception):
    """Base class for every failure surfaced by a reconciliation cycle."""


class SubscriptionError(UpstreamSyncError):
    """The node watch could not be established or broke while streaming."""


class ClusterReadError(UpstreamSyncError):
    """A cluster API call failed; ``operation`` names the call."""

    operation = "cluster read"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.operation} failed: {message}")


class PortLookupError(ClusterReadError):
    operation = "port lookup"


class NodeListError(ClusterReadError):
    operation = "node listing"


class PortNotFound(UpstreamSyncError):
    def __init__(self, namespace: str, service_name: str, port_name: str) -> None:
        self.namespace = namespace
        self.service_name = service_name
        self.port_name = port_name
        super().__init__(
            f"port {port_name!r} not found in service {namespace}/{service_name}"
        )


class EmptyUpstreamSet(UpstreamSyncError):
    """No node qualified for the upstream block."""


class ArtifactWriteError(UpstreamSyncError):
    def __init__(self, path: Path, reason: str) -> None:
        self.path = Path(path)
        super().__init__(f"failed to write {self.path}: {reason}")


class ReloadCommandMissing(UpstreamSyncError):
    def __init__(self) -> None:
        super().__init__("reload command not specified")


class ReloadFailed(UpstreamSyncError):
    """The reload command could not run or exited non-zero."""

    def __init__(
        self,
        command: Sequence[str],
        output: str,
        returncode: Optional[int],
        reason: str,
    ) -> None:
        self.command = list(command)
        self.output = output
        self.returncode = returncode
        super().__init__(
            f"reload command {' '.join(self.command)!r} failed: {reason}, "
            f"output: {output.strip()}"
        )
