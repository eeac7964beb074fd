"""Abstract interfaces for the collaborators of the subnet service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from capa_subnet.config import (
    CidrAssociation,
    ClusterNetworkRecord,
    Lease,
    NodePoolRecord,
)


class ObjectStore(ABC):
    """Declarative record store with compare-and-swap updates.

    Every read returns a private copy.  Every write compares the record's
    ``resource_version`` with the stored one, raises
    :class:`~capa_subnet.exceptions.PersistenceConflict` when they differ and
    bumps the version on the caller's object when the write lands.
    """

    @abstractmethod
    def get_node_pool(self, name: str) -> NodePoolRecord:
        """Return node pool ``name`` or raise ``NodePoolNotFound``."""

    @abstractmethod
    def list_node_pools(self, cluster_id: Optional[str] = None) -> List[NodePoolRecord]:
        """Return all node pools, optionally only those of ``cluster_id``."""

    @abstractmethod
    def update_node_pool(self, pool: NodePoolRecord) -> NodePoolRecord:
        """Persist ``pool``.

        A pool marked ``deleting`` without finalizers is removed instead,
        mirroring control-plane garbage collection.
        """

    @abstractmethod
    def list_cluster_networks(self, cluster_id: str) -> List[ClusterNetworkRecord]:
        """Return every cluster network record owned by ``cluster_id``."""

    @abstractmethod
    def update_cluster_network(self, cluster: ClusterNetworkRecord) -> ClusterNetworkRecord:
        """Persist ``cluster``."""

    @abstractmethod
    def get_lease(self, name: str) -> Optional[Lease]:
        """Return lease ``name`` or ``None``."""

    @abstractmethod
    def put_lease(self, lease: Lease) -> Lease:
        """Create (``resource_version == 0``) or update ``lease``."""

    @abstractmethod
    def delete_lease(self, lease: Lease) -> None:
        """Delete ``lease`` if its version still matches."""


class NetworkProvider(ABC):
    """Cloud network API managing the ranges associated with a VPC.

    Implementations raise :class:`~capa_subnet.exceptions.ProviderError` on
    any API failure.
    """

    @abstractmethod
    def list_cidr_associations(self, vpc_id: str) -> List[CidrAssociation]:
        """Return the ranges currently associated with ``vpc_id``."""

    @abstractmethod
    def associate_cidr(self, vpc_id: str, cidr: str) -> CidrAssociation:
        """Associate ``cidr`` with ``vpc_id``."""

    @abstractmethod
    def disassociate_cidr(self, vpc_id: str, association_id: str) -> None:
        """Remove association ``association_id`` from ``vpc_id``."""
