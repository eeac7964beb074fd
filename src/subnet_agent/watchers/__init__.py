"""Watcher implementations used by the subnet agent."""

from .store import NodePoolWatcher  # noqa: F401

__all__ = ["NodePoolWatcher"]
