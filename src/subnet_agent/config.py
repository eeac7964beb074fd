"""YAML configuration loader for the subnet agent."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from capa_subnet.config import (
    DEFAULT_PARENT_CIDR,
    DEFAULT_SUBNET_PREFIX_LENGTH,
    AllocationSettings,
)
from capa_subnet.exceptions import InvalidRequest
from capa_subnet.lock import (
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_LEASE_DURATION,
    DEFAULT_RETRY_PERIOD,
)
from subnet_operator.reconciler import DEFAULT_REQUEUE_AFTER

BACKEND_TYPES = ("file", "memory")


@dataclass
class BackendConfig:
    type: str = "memory"
    path: Optional[Path] = None


@dataclass
class LockConfig:
    holder_identity: str = field(default_factory=socket.gethostname)
    lease_duration: float = DEFAULT_LEASE_DURATION
    retry_period: float = DEFAULT_RETRY_PERIOD
    acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT


@dataclass
class ReconcileConfig:
    interval: float = DEFAULT_REQUEUE_AFTER
    workers: int = 4
    watch_filter: Optional[str] = None


@dataclass
class AgentConfig:
    allocation: AllocationSettings = field(default_factory=AllocationSettings)
    store: BackendConfig = field(default_factory=BackendConfig)
    provider: BackendConfig = field(default_factory=BackendConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def _parse_allocation(section: dict) -> AllocationSettings:
    try:
        return AllocationSettings(
            parent_cidr=str(section.get("parent_cidr", DEFAULT_PARENT_CIDR)),
            subnet_prefix_length=int(
                section.get("subnet_prefix_length", DEFAULT_SUBNET_PREFIX_LENGTH)
            ),
        )
    except InvalidRequest as exc:
        raise ValueError(f"invalid allocation settings: {exc}") from exc


def _parse_backend(section: dict, name: str) -> BackendConfig:
    backend_type = str(section.get("type", "memory"))
    if backend_type not in BACKEND_TYPES:
        raise ValueError(f"unsupported {name} type '{backend_type}'")
    path = section.get("path")
    if backend_type == "file" and not path:
        raise ValueError(f"{name} type 'file' requires a 'path'")
    return BackendConfig(type=backend_type, path=Path(path) if path else None)


def _parse_lock(section: dict) -> LockConfig:
    lock = LockConfig(
        lease_duration=float(section.get("lease_duration", DEFAULT_LEASE_DURATION)),
        retry_period=float(section.get("retry_period", DEFAULT_RETRY_PERIOD)),
        acquire_timeout=float(section.get("acquire_timeout", DEFAULT_ACQUIRE_TIMEOUT)),
    )
    if section.get("holder_identity"):
        lock.holder_identity = str(section["holder_identity"])
    if lock.lease_duration <= 0:
        raise ValueError("lock 'lease_duration' must be positive")
    return lock


def _parse_reconcile(section: dict) -> ReconcileConfig:
    workers = int(section.get("workers", 4))
    if workers < 1:
        raise ValueError("reconcile 'workers' must be at least 1")
    watch_filter = section.get("watch_filter")
    return ReconcileConfig(
        interval=float(section.get("interval", DEFAULT_REQUEUE_AFTER)),
        workers=workers,
        watch_filter=str(watch_filter) if watch_filter is not None else None,
    )


def load_config(path: Path) -> AgentConfig:
    data = yaml.safe_load(path.read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    return AgentConfig(
        allocation=_parse_allocation(_section(data, "allocation")),
        store=_parse_backend(_section(data, "store"), "store"),
        provider=_parse_backend(_section(data, "provider"), "provider"),
        lock=_parse_lock(_section(data, "lock")),
        reconcile=_parse_reconcile(_section(data, "reconcile")),
    )
