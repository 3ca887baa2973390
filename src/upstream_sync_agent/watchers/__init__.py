"""Watcher implementations used by the upstream sync agent."""

from .nodes import NodeMembershipWatcher, WatcherState  # noqa: F401

__all__ = ["NodeMembershipWatcher", "WatcherState"]
