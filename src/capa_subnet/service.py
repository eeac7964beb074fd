"""Subnet allocation and reclaim workflows for a single node pool.

:class:`SubnetService` is the orchestrator called by the reconciler.  A
reconcile attempt walks through four idempotent steps:

* reuse the pool's persisted range, or pick the lowest free one while holding
  the cluster lease and persist it on the pool;
* make sure the cloud network has the range associated;
* split the range across the pool's availability zones; and
* publish every missing per-zone subnet on the cluster network record.

Any step may fail; the attempt is abandoned without rollback and the next
scheduled attempt resumes from whatever was persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from . import keys
from .allocator import find_free, split_evenly
from .config import (
    AllocationSettings,
    ClusterNetworkRecord,
    Network,
    NodePoolRecord,
    SubnetSpec,
    parse_cidr,
)
from .exceptions import AmbiguousOwner, ClusterNotFound
from .lock import LeaseLock

if TYPE_CHECKING:  # pragma: no cover
    from subnet_operator.clients.base import NetworkProvider, ObjectStore

LOG = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    """What a single reconcile attempt did."""

    cidr: Network
    allocated: bool = False
    associated: bool = False
    published: List[Network] = field(default_factory=list)


class SubnetService:
    """Allocate, associate, publish and reclaim node pool subnets."""

    def __init__(
        self,
        store: "ObjectStore",
        provider: "NetworkProvider",
        lock: LeaseLock,
        settings: Optional[AllocationSettings] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._lock = lock
        self._settings = settings or AllocationSettings()

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------
    def reconcile(self, pool: NodePoolRecord) -> ReconcileOutcome:
        cluster = self.resolve_cluster(pool.cluster_id)

        existing = pool.assigned_cidr
        if existing is not None:
            outcome = ReconcileOutcome(cidr=parse_cidr(existing))
        else:
            outcome = ReconcileOutcome(cidr=self._allocate(pool, cluster))
            outcome.allocated = True

        outcome.associated = self._ensure_association(cluster, outcome.cidr)
        outcome.published = self._publish_subnets(pool, cluster, outcome.cidr)
        return outcome

    def resolve_cluster(self, cluster_id: str) -> ClusterNetworkRecord:
        clusters = self._store.list_cluster_networks(cluster_id)
        if not clusters:
            raise ClusterNotFound(cluster_id)
        if len(clusters) > 1:
            raise AmbiguousOwner(cluster_id, len(clusters))
        return clusters[0]

    def _allocate(self, pool: NodePoolRecord, cluster: ClusterNetworkRecord) -> Network:
        with self._lock.held(pool.cluster_id) as lease:
            # Another attempt for the same pool may have won the lease first.
            fresh = self._store.get_node_pool(pool.name)
            if fresh.assigned_cidr is not None:
                LOG.info(
                    "Node pool %s was assigned %s concurrently, reusing it",
                    pool.name,
                    fresh.assigned_cidr,
                )
                self._adopt(pool, fresh)
                return parse_cidr(fresh.assigned_cidr)

            used = [parse_cidr(cluster.vpc_cidr)]
            for sibling in self._store.list_node_pools(pool.cluster_id):
                if sibling.name == pool.name or sibling.assigned_cidr is None:
                    continue
                used.append(parse_cidr(sibling.assigned_cidr))

            cidr = find_free(
                self._settings.parent_network,
                self._settings.subnet_prefix_length,
                used,
            )
            fresh.annotations[keys.ANNOTATION_ASSIGNED_CIDR] = str(cidr)
            # The sibling snapshot is only valid while the lease is still ours.
            self._lock.renew(lease)
            self._store.update_node_pool(fresh)
            self._adopt(pool, fresh)

        LOG.info(
            "Allocated %s to node pool %s in cluster %s",
            cidr,
            pool.name,
            pool.cluster_id,
        )
        return cidr

    @staticmethod
    def _adopt(pool: NodePoolRecord, fresh: NodePoolRecord) -> None:
        pool.annotations = dict(fresh.annotations)
        pool.resource_version = fresh.resource_version

    def _ensure_association(self, cluster: ClusterNetworkRecord, cidr: Network) -> bool:
        associations = self._provider.list_cidr_associations(cluster.vpc_id)
        if keys.has_cidr(str(cidr), (a.cidr_block for a in associations)):
            LOG.debug("%s already associated with VPC %s", cidr, cluster.vpc_id)
            return False

        association = self._provider.associate_cidr(cluster.vpc_id, str(cidr))
        LOG.info(
            "Associated %s with VPC %s (association %s)",
            cidr,
            cluster.vpc_id,
            association.association_id,
        )
        return True

    def _publish_subnets(
        self,
        pool: NodePoolRecord,
        cluster: ClusterNetworkRecord,
        cidr: Network,
    ) -> List[Network]:
        ranges = split_evenly(cidr, len(pool.availability_zones))
        added: List[Network] = []
        for zone, subnet in zip(pool.availability_zones, ranges):
            if cluster.has_subnet(subnet):
                continue
            cluster.subnets.append(
                SubnetSpec(
                    cidr_block=str(subnet),
                    availability_zone=zone,
                    is_public=False,
                    tags=keys.subnet_tags(pool.name),
                )
            )
            added.append(subnet)

        if not added:
            LOG.debug("Cluster %s already lists all subnets of %s", cluster.name, pool.name)
            return added

        self._store.update_cluster_network(cluster)
        LOG.info(
            "Published subnets %s of node pool %s on cluster %s",
            ", ".join(str(s) for s in added),
            pool.name,
            cluster.name,
        )
        return added

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete(self, pool: NodePoolRecord) -> bool:
        """Reclaim the pool's range.  Returns ``False`` if nothing was assigned."""

        existing = pool.assigned_cidr
        if existing is None:
            LOG.debug("Node pool %s has no reserved range", pool.name)
            return False

        cidr = str(parse_cidr(existing))
        cluster = self.resolve_cluster(pool.cluster_id)

        associations = self._provider.list_cidr_associations(cluster.vpc_id)
        match = next((a for a in associations if a.cidr_block == cidr), None)
        if match is None:
            LOG.debug("%s is not associated with VPC %s", cidr, cluster.vpc_id)
        else:
            self._provider.disassociate_cidr(cluster.vpc_id, match.association_id)
            LOG.info(
                "Disassociated %s from VPC %s (association %s)",
                cidr,
                cluster.vpc_id,
                match.association_id,
            )

        del pool.annotations[keys.ANNOTATION_ASSIGNED_CIDR]
        self._store.update_node_pool(pool)
        LOG.info("Released %s from node pool %s", cidr, pool.name)
        return True
