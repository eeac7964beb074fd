"""Well-known labels, annotations and tags plus small lookup helpers."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

DOMAIN = "subnet-operator.io"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CLUSTER_WATCH_FILTER_LABEL = "cluster.x-k8s.io/watch-filter"

FINALIZER_NAME = f"{DOMAIN}/machinepool-subnet"

ANNOTATION_ASSIGNED_CIDR = f"machinepool.{DOMAIN}/reserved-cidr"

MACHINE_POOL_SUBNET_TAG = "sigs.k8s.io/cluster-api-provider-aws/machinepool"

LEASE_PREFIX = "subnet-allocation-"


def lease_name(cluster_id: str) -> str:
    return f"{LEASE_PREFIX}{cluster_id}"


def subnet_tags(node_pool_name: str) -> Dict[str, str]:
    return {MACHINE_POOL_SUBNET_TAG: node_pool_name}


def assigned_cidr(annotations: Mapping[str, str]) -> Optional[str]:
    value = annotations.get(ANNOTATION_ASSIGNED_CIDR)
    return value or None


def matches_watch_filter(labels: Mapping[str, str], watch_filter: Optional[str]) -> bool:
    """Return ``True`` when ``labels`` pass the configured watch filter.

    A ``None`` filter accepts every record.
    """

    if watch_filter is None:
        return True
    return labels.get(CLUSTER_WATCH_FILTER_LABEL) == watch_filter


def has_cidr(cidr: str, cidr_blocks: Iterable[str]) -> bool:
    return any(cidr == block for block in cidr_blocks)
