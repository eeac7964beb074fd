"""In-memory collaborators used by tests and single-process lab runs."""

from __future__ import annotations

import contextlib
import copy
import ipaddress
import itertools
import logging
import threading
from typing import Dict, Iterator, List, Optional

from capa_subnet.config import (
    CidrAssociation,
    ClusterNetworkRecord,
    Lease,
    NodePoolRecord,
)
from capa_subnet.exceptions import (
    NodePoolNotFound,
    PersistenceConflict,
    ProviderError,
)

from .base import NetworkProvider, ObjectStore

LOG = logging.getLogger(__name__)


def _check_version(kind: str, name: str, stored, incoming) -> None:
    stored_version = stored.resource_version if stored is not None else 0
    if stored_version != incoming.resource_version:
        raise PersistenceConflict(
            f"{kind} '{name}' was modified concurrently "
            f"(have version {incoming.resource_version}, stored {stored_version})"
        )


class InMemoryObjectStore(ObjectStore):
    """Thread-safe dictionary-backed :class:`ObjectStore`."""

    def __init__(self) -> None:
        self._mutex = threading.RLock()
        self._node_pools: Dict[str, NodePoolRecord] = {}
        self._clusters: Dict[str, ClusterNetworkRecord] = {}
        self._leases: Dict[str, Lease] = {}

    @contextlib.contextmanager
    def _transaction(self, write: bool = False) -> Iterator[None]:
        with self._mutex:
            yield

    # ------------------------------------------------------------------
    # Seeding helpers (the control plane's side of the store)
    # ------------------------------------------------------------------
    def create_node_pool(self, pool: NodePoolRecord) -> NodePoolRecord:
        with self._transaction(write=True):
            if pool.name in self._node_pools:
                raise PersistenceConflict(f"node pool '{pool.name}' already exists")
            pool.resource_version = 1
            self._node_pools[pool.name] = copy.deepcopy(pool)
        return pool

    def create_cluster_network(self, cluster: ClusterNetworkRecord) -> ClusterNetworkRecord:
        with self._transaction(write=True):
            if cluster.name in self._clusters:
                raise PersistenceConflict(f"cluster network '{cluster.name}' already exists")
            cluster.resource_version = 1
            self._clusters[cluster.name] = copy.deepcopy(cluster)
        return cluster

    def mark_node_pool_deleting(self, name: str) -> None:
        """Request deletion of ``name``; finalizers keep it around until cleared."""

        with self._transaction(write=True):
            stored = self._node_pools.get(name)
            if stored is None:
                raise NodePoolNotFound(name)
            stored.deleting = True
            stored.resource_version += 1
            if not stored.finalizers:
                del self._node_pools[name]

    # ------------------------------------------------------------------
    # Node pools
    # ------------------------------------------------------------------
    def get_node_pool(self, name: str) -> NodePoolRecord:
        with self._transaction():
            stored = self._node_pools.get(name)
            if stored is None:
                raise NodePoolNotFound(name)
            return copy.deepcopy(stored)

    def list_node_pools(self, cluster_id: Optional[str] = None) -> List[NodePoolRecord]:
        with self._transaction():
            return [
                copy.deepcopy(pool)
                for pool in sorted(self._node_pools.values(), key=lambda p: p.name)
                if cluster_id is None or pool.cluster_id == cluster_id
            ]

    def update_node_pool(self, pool: NodePoolRecord) -> NodePoolRecord:
        with self._transaction(write=True):
            stored = self._node_pools.get(pool.name)
            if stored is None:
                raise NodePoolNotFound(pool.name)
            _check_version("node pool", pool.name, stored, pool)
            pool.resource_version += 1
            if pool.deleting and not pool.finalizers:
                LOG.debug("node pool %s has no finalizers left, removing it", pool.name)
                del self._node_pools[pool.name]
            else:
                self._node_pools[pool.name] = copy.deepcopy(pool)
        return pool

    # ------------------------------------------------------------------
    # Cluster networks
    # ------------------------------------------------------------------
    def list_cluster_networks(self, cluster_id: str) -> List[ClusterNetworkRecord]:
        with self._transaction():
            return [
                copy.deepcopy(cluster)
                for cluster in sorted(self._clusters.values(), key=lambda c: c.name)
                if cluster.cluster_id == cluster_id
            ]

    def update_cluster_network(self, cluster: ClusterNetworkRecord) -> ClusterNetworkRecord:
        with self._transaction(write=True):
            stored = self._clusters.get(cluster.name)
            if stored is None:
                raise PersistenceConflict(f"cluster network '{cluster.name}' no longer exists")
            _check_version("cluster network", cluster.name, stored, cluster)
            cluster.resource_version += 1
            self._clusters[cluster.name] = copy.deepcopy(cluster)
        return cluster

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------
    def get_lease(self, name: str) -> Optional[Lease]:
        with self._transaction():
            stored = self._leases.get(name)
            return copy.deepcopy(stored) if stored is not None else None

    def put_lease(self, lease: Lease) -> Lease:
        with self._transaction(write=True):
            _check_version("lease", lease.name, self._leases.get(lease.name), lease)
            lease.resource_version += 1
            self._leases[lease.name] = copy.deepcopy(lease)
        return lease

    def delete_lease(self, lease: Lease) -> None:
        with self._transaction(write=True):
            stored = self._leases.get(lease.name)
            if stored is None:
                return
            _check_version("lease", lease.name, stored, lease)
            del self._leases[lease.name]


class InMemoryNetworkProvider(NetworkProvider):
    """Simulated cloud network keeping VPC range associations in memory."""

    def __init__(self) -> None:
        self._mutex = threading.RLock()
        self._vpcs: Dict[str, List[CidrAssociation]] = {}
        self._ids = itertools.count(1)

    @contextlib.contextmanager
    def _transaction(self, write: bool = False) -> Iterator[None]:
        with self._mutex:
            yield

    def _next_id(self) -> str:
        return f"vpc-cidr-assoc-{next(self._ids):08x}"

    def create_vpc(self, vpc_id: str, primary_cidr: str) -> CidrAssociation:
        with self._transaction(write=True):
            association = CidrAssociation(self._next_id(), primary_cidr, vpc_id)
            self._vpcs.setdefault(vpc_id, []).append(association)
        return association

    def list_cidr_associations(self, vpc_id: str) -> List[CidrAssociation]:
        with self._transaction():
            if vpc_id not in self._vpcs:
                raise ProviderError(f"VPC '{vpc_id}' does not exist")
            return list(self._vpcs[vpc_id])

    def associate_cidr(self, vpc_id: str, cidr: str) -> CidrAssociation:
        try:
            requested = ipaddress.ip_network(cidr)
        except ValueError as exc:
            raise ProviderError(f"invalid CIDR block '{cidr}': {exc}") from exc

        with self._transaction(write=True):
            associations = self._vpcs.get(vpc_id)
            if associations is None:
                raise ProviderError(f"VPC '{vpc_id}' does not exist")
            for existing in associations:
                if existing.cidr_block == cidr:
                    return existing
                if ipaddress.ip_network(existing.cidr_block).overlaps(requested):
                    raise ProviderError(
                        f"{cidr} overlaps {existing.cidr_block} already associated with {vpc_id}"
                    )
            association = CidrAssociation(self._next_id(), cidr, vpc_id)
            associations.append(association)
        return association

    def disassociate_cidr(self, vpc_id: str, association_id: str) -> None:
        with self._transaction(write=True):
            associations = self._vpcs.get(vpc_id)
            if associations is None:
                raise ProviderError(f"VPC '{vpc_id}' does not exist")
            remaining = [a for a in associations if a.association_id != association_id]
            if len(remaining) == len(associations):
                raise ProviderError(
                    f"association '{association_id}' not found on VPC {vpc_id}"
                )
            self._vpcs[vpc_id] = remaining
