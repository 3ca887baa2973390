"""Run the proxy's reload command."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .exceptions import ReloadCommandMissing, ReloadFailed

LOG = logging.getLogger(__name__)


@dataclass
class ReloadResult:
    command: List[str]
    returncode: int
    output: str


class ProxyReloadDriver:
    """Execute a fixed argument vector; no shell is involved."""

    def __init__(
        self, command: Sequence[str], timeout: Optional[float] = None
    ) -> None:
        self._command = [str(arg) for arg in command]
        self._timeout = timeout

    @property
    def command(self) -> List[str]:
        return list(self._command)

    def reload(self) -> ReloadResult:
        if not self._command:
            raise ReloadCommandMissing()

        LOG.debug("running reload command %s", self._command)
        try:
            result = subprocess.run(
                self._command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            output = exc.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            raise ReloadFailed(
                self._command, output, None, f"timed out after {self._timeout}s"
            ) from exc
        except OSError as exc:
            raise ReloadFailed(self._command, "", None, str(exc)) from exc

        output = result.stdout or ""
        if result.returncode != 0:
            raise ReloadFailed(
                self._command,
                output,
                result.returncode,
                f"exit status {result.returncode}",
            )
        return ReloadResult(
            command=list(self._command), returncode=result.returncode, output=output
        )
