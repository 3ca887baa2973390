"""YAML configuration loader for the upstream sync agent."""

from __future__ import annotations

import argparse
import logging
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from upstream_sync.config import (
    DEFAULT_NAMESPACE,
    DEFAULT_NGINX_CONF,
    DEFAULT_RELOAD_COMMAND,
    DEFAULT_UPSTREAM_NAME,
    ReconciliationConfig,
)

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/nginx_updater/config.yaml")
# Every reconnect replays all nodes as ADDED events, one cycle and one reload
# each, so keep the server-side watch timeout long.
DEFAULT_WATCH_TIMEOUT = 3600
DEFAULT_WATCH_BACKOFF = 5.0

# Key names used by earlier releases of the updater.
_LEGACY_KEYS = {
    "Namespace": "namespace",
    "ServiceName": "service_name",
    "PortName": "port_name",
    "NginxConf": "nginx_conf",
    "ReloadCmd": "reload_cmd",
    "NodeLabelKey": "node_label_key",
    "NodeLabelVal": "node_label_value",
    "IgnoreNotReady": "ignore_not_ready",
}


@dataclass
class AgentConfig:
    """Agent settings as read from the YAML file and command line.

    ``watch_timeout`` is the server-side lifetime of one node watch in seconds.
    When it expires the watcher reconnects and the API server replays every
    matching node as an ``ADDED`` event, so a cluster of N nodes costs N
    reconciliation cycles (and N reloads) per timeout.
    """

    namespace: str = ""
    service_name: str = ""
    port_name: str = ""
    nginx_conf: Optional[Path] = None
    reload_cmd: List[str] = field(default_factory=list)
    node_label_key: str = ""
    node_label_value: str = ""
    ignore_not_ready: bool = False
    upstream_name: str = DEFAULT_UPSTREAM_NAME
    reload_timeout: Optional[float] = None
    watch_timeout: int = DEFAULT_WATCH_TIMEOUT
    watch_backoff: float = DEFAULT_WATCH_BACKOFF

    def with_defaults(self) -> "AgentConfig":
        return replace(
            self,
            namespace=self.namespace or DEFAULT_NAMESPACE,
            nginx_conf=self.nginx_conf or DEFAULT_NGINX_CONF,
            reload_cmd=self.reload_cmd or list(DEFAULT_RELOAD_COMMAND),
        )

    def to_reconciliation_config(self) -> ReconciliationConfig:
        if not self.service_name:
            raise ValueError(
                "service name must be specified (via config file or --service flag)"
            )
        cfg = self.with_defaults()
        return ReconciliationConfig(
            namespace=cfg.namespace,
            service_name=cfg.service_name,
            port_name=cfg.port_name,
            node_label_key=cfg.node_label_key,
            node_label_value=cfg.node_label_value,
            ignore_not_ready=cfg.ignore_not_ready,
            output_path=Path(cfg.nginx_conf),
            reload_command=tuple(cfg.reload_cmd),
            upstream_name=cfg.upstream_name,
            reload_timeout=cfg.reload_timeout,
        )


def _parse_command(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(arg) for arg in value]
    raise ValueError("'reload_cmd' must be a list or a string")


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"expected a number, got {value!r}") from exc


def _number(section: Dict[str, Any], key: str, default, convert):
    value = section.get(key)
    if value is None:
        return default
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' must be a number, got {value!r}") from exc


def _normalise_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}


def parse_config(data: Dict[str, Any]) -> AgentConfig:
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")
    section = _normalise_keys(data)
    nginx_conf = section.get("nginx_conf")
    return AgentConfig(
        namespace=str(section.get("namespace") or ""),
        service_name=str(section.get("service_name") or ""),
        port_name=str(section.get("port_name") or ""),
        nginx_conf=Path(nginx_conf) if nginx_conf else None,
        reload_cmd=_parse_command(section.get("reload_cmd")),
        node_label_key=str(section.get("node_label_key") or ""),
        node_label_value=str(section.get("node_label_value") or ""),
        ignore_not_ready=bool(section.get("ignore_not_ready", False)),
        upstream_name=str(section.get("upstream_name") or DEFAULT_UPSTREAM_NAME),
        reload_timeout=_optional_float(section.get("reload_timeout")),
        watch_timeout=_number(section, "watch_timeout", DEFAULT_WATCH_TIMEOUT, int),
        watch_backoff=_number(section, "watch_backoff", DEFAULT_WATCH_BACKOFF, float),
    )


def load_config(path: Path) -> Optional[AgentConfig]:
    """Load ``path``; a missing file yields ``None``."""

    try:
        text = path.read_text()
    except FileNotFoundError:
        return None
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse config file {path}: {exc}") from exc
    if data is None:
        return AgentConfig()
    return parse_config(data)


def resolve_config(args: argparse.Namespace) -> AgentConfig:
    """Merge the config file(s) with command-line overrides.

    The default file is read first; an explicit ``--config`` replaces it when
    present.  Non-empty flags then override file values and defaults fill the
    remaining gaps.
    """

    cfg = load_config(DEFAULT_CONFIG_PATH) or AgentConfig()

    config_path: Optional[Path] = getattr(args, "config", None)
    if config_path is not None and config_path != DEFAULT_CONFIG_PATH:
        file_cfg = load_config(config_path)
        if file_cfg is None:
            LOG.warning("config file %s not found, ignoring", config_path)
        else:
            cfg = file_cfg

    overrides: Dict[str, Any] = {}
    for attr, dest in (
        ("namespace", "namespace"),
        ("service_name", "service"),
        ("port_name", "port_name"),
        ("node_label_key", "node_label_key"),
        ("node_label_value", "node_label_val"),
        ("upstream_name", "upstream_name"),
    ):
        value = getattr(args, dest, None)
        if value:
            overrides[attr] = value
    if getattr(args, "nginx_conf", None):
        overrides["nginx_conf"] = Path(args.nginx_conf)
    if getattr(args, "reload_cmd", None):
        overrides["reload_cmd"] = shlex.split(args.reload_cmd)
    if getattr(args, "ignore_not_ready", None) is not None:
        overrides["ignore_not_ready"] = args.ignore_not_ready

    return replace(cfg, **overrides).with_defaults()
