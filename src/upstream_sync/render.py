"""nginx upstream rendering."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .config import DEFAULT_UPSTREAM_NAME, NodeAddress, UpstreamSet
from .exceptions import ArtifactWriteError

LOG = logging.getLogger(__name__)

FILE_MODE = 0o644


@dataclass
class RenderResult:
    """Result of an upstream rendering operation."""

    config_text: str
    output_path: Path
    upstreams: UpstreamSet


class NginxUpstreamRenderer:
    """Render an ``upstream`` block and replace the target file with it."""

    def __init__(
        self, output_path: Path, upstream_name: str = DEFAULT_UPSTREAM_NAME
    ) -> None:
        self._output_path = Path(output_path)
        self._upstream_name = upstream_name

    @property
    def output_path(self) -> Path:
        return self._output_path

    def render(self, port: int, nodes: Sequence[NodeAddress]) -> RenderResult:
        upstreams = UpstreamSet.build(self._upstream_name, port, nodes)
        body = self.render_text(upstreams)
        self._write(body)
        return RenderResult(
            config_text=body, output_path=self._output_path, upstreams=upstreams
        )

    @staticmethod
    def render_text(upstreams: UpstreamSet) -> str:
        lines = [f"upstream {upstreams.name} {{"]
        for server in upstreams.servers:
            lines.append(f"    server {server};")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def _write(self, body: str) -> None:
        # Write next to the target so os.replace stays on one filesystem.
        directory = self._output_path.parent
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._output_path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as exc:
            raise ArtifactWriteError(self._output_path, str(exc)) from exc

        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(body)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, FILE_MODE)
            os.replace(tmp_name, self._output_path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise ArtifactWriteError(self._output_path, str(exc)) from exc
        LOG.debug("wrote %d bytes to %s", len(body), self._output_path)
