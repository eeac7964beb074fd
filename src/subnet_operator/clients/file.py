"""JSON-file backed collaborators for lab deployments.

Store and provider share a single state document::

    {
      "clusters":  [{"name": ..., "clusterId": ..., "vpcId": ..., "vpcCidr": ...,
                     "subnets": [...], "resourceVersion": 1}],
      "nodePools": [{"name": ..., "clusterId": ..., "availabilityZones": [...],
                     "annotations": {...}, "labels": {...}, "deleting": false,
                     "finalizers": [...], "resourceVersion": 1}],
      "leases":    [...],
      "vpcs":      {"vpc-123": [{"associationId": ..., "cidrBlock": ...}]}
    }

Each operation is a read-modify-write cycle serialized across processes by an
``fcntl`` lock on ``<state>.lock`` and committed with an atomic rename, so
several agents may share one state file.  Each class rewrites only its own
sections.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator

from capa_subnet.config import (
    CidrAssociation,
    ClusterNetworkRecord,
    Lease,
    NodePoolRecord,
    SubnetSpec,
)

from .memory import InMemoryNetworkProvider, InMemoryObjectStore

LOG = logging.getLogger(__name__)


@contextlib.contextmanager
def _locked_document(path: Path) -> Iterator[Dict[str, Any]]:
    lock_path = path.with_name(path.name + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        try:
            if path.exists() and path.stat().st_size:
                document = json.loads(path.read_text())
                if not isinstance(document, dict):
                    raise ValueError(f"state file {path} must contain a JSON object")
            else:
                document = {}
            yield document
        finally:
            fcntl.flock(lock_file, fcntl.LOCK_UN)


def _write_document(path: Path, document: Dict[str, Any]) -> None:
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp_path.write_text(json.dumps(document, indent=2, sort_keys=True))
    os.replace(tmp_path, path)


def pool_from_dict(entry: dict) -> NodePoolRecord:
    return NodePoolRecord(
        name=str(entry["name"]),
        cluster_id=str(entry["clusterId"]),
        availability_zones=[str(z) for z in entry.get("availabilityZones", [])],
        annotations=dict(entry.get("annotations", {})),
        labels=dict(entry.get("labels", {})),
        deleting=bool(entry.get("deleting", False)),
        finalizers=[str(f) for f in entry.get("finalizers", [])],
        resource_version=int(entry.get("resourceVersion", 1)),
    )


def pool_to_dict(pool: NodePoolRecord) -> dict:
    return {
        "name": pool.name,
        "clusterId": pool.cluster_id,
        "availabilityZones": list(pool.availability_zones),
        "annotations": dict(pool.annotations),
        "labels": dict(pool.labels),
        "deleting": pool.deleting,
        "finalizers": list(pool.finalizers),
        "resourceVersion": pool.resource_version,
    }


def cluster_from_dict(entry: dict) -> ClusterNetworkRecord:
    return ClusterNetworkRecord(
        name=str(entry["name"]),
        cluster_id=str(entry["clusterId"]),
        vpc_id=str(entry["vpcId"]),
        vpc_cidr=str(entry["vpcCidr"]),
        subnets=[
            SubnetSpec(
                cidr_block=str(s["cidrBlock"]),
                availability_zone=str(s.get("availabilityZone", "")),
                is_public=bool(s.get("isPublic", False)),
                tags=dict(s.get("tags", {})),
            )
            for s in entry.get("subnets", [])
        ],
        resource_version=int(entry.get("resourceVersion", 1)),
    )


def cluster_to_dict(cluster: ClusterNetworkRecord) -> dict:
    return {
        "name": cluster.name,
        "clusterId": cluster.cluster_id,
        "vpcId": cluster.vpc_id,
        "vpcCidr": cluster.vpc_cidr,
        "subnets": [
            {
                "cidrBlock": s.cidr_block,
                "availabilityZone": s.availability_zone,
                "isPublic": s.is_public,
                "tags": dict(s.tags),
            }
            for s in cluster.subnets
        ],
        "resourceVersion": cluster.resource_version,
    }


def _lease_from_dict(entry: dict) -> Lease:
    return Lease(
        name=str(entry["name"]),
        holder=str(entry["holder"]),
        acquired_at=float(entry["acquiredAt"]),
        renewed_at=float(entry["renewedAt"]),
        duration=float(entry["duration"]),
        resource_version=int(entry.get("resourceVersion", 1)),
    )


def _lease_to_dict(lease: Lease) -> dict:
    return {
        "name": lease.name,
        "holder": lease.holder,
        "acquiredAt": lease.acquired_at,
        "renewedAt": lease.renewed_at,
        "duration": lease.duration,
        "resourceVersion": lease.resource_version,
    }


class FileObjectStore(InMemoryObjectStore):
    """:class:`InMemoryObjectStore` whose tables live in a JSON state file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @contextlib.contextmanager
    def _transaction(self, write: bool = False) -> Iterator[None]:
        with self._mutex, _locked_document(self._path) as document:
            self._node_pools = {
                p.name: p for p in map(pool_from_dict, document.get("nodePools", []))
            }
            self._clusters = {
                c.name: c for c in map(cluster_from_dict, document.get("clusters", []))
            }
            self._leases = {
                lease.name: lease
                for lease in map(_lease_from_dict, document.get("leases", []))
            }
            yield
            if write:
                document["nodePools"] = [
                    pool_to_dict(p) for _, p in sorted(self._node_pools.items())
                ]
                document["clusters"] = [
                    cluster_to_dict(c) for _, c in sorted(self._clusters.items())
                ]
                document["leases"] = [
                    _lease_to_dict(lease) for _, lease in sorted(self._leases.items())
                ]
                _write_document(self._path, document)
                LOG.debug("wrote store state to %s", self._path)


class FileNetworkProvider(InMemoryNetworkProvider):
    """Simulated cloud network whose associations live in a JSON state file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)

    def _next_id(self) -> str:
        return f"vpc-cidr-assoc-{uuid.uuid4().hex[:17]}"

    @contextlib.contextmanager
    def _transaction(self, write: bool = False) -> Iterator[None]:
        with self._mutex, _locked_document(self._path) as document:
            self._vpcs = {
                vpc_id: [
                    CidrAssociation(
                        association_id=str(a["associationId"]),
                        cidr_block=str(a["cidrBlock"]),
                        vpc_id=vpc_id,
                    )
                    for a in associations
                ]
                for vpc_id, associations in document.get("vpcs", {}).items()
            }
            yield
            if write:
                document["vpcs"] = {
                    vpc_id: [
                        {"associationId": a.association_id, "cidrBlock": a.cidr_block}
                        for a in associations
                    ]
                    for vpc_id, associations in sorted(self._vpcs.items())
                }
                _write_document(self._path, document)
                LOG.debug("wrote provider state to %s", self._path)
