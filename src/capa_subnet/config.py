"""Record types and operator-wide settings.

These light-weight dataclasses describe the values the service reads from and
writes back to its collaborators.  Records are fetched fresh for every
reconcile attempt; nothing here is cached between attempts.  The
``resource_version`` fields are owned by the object store and used for
compare-and-swap updates.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from . import keys
from .exceptions import InvalidRequest

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_PARENT_CIDR = "10.10.0.0/16"
DEFAULT_SUBNET_PREFIX_LENGTH = 24


def parse_cidr(value: str) -> Network:
    """Parse ``value`` as an address range, rejecting host bits.

    Raises
    ------
    InvalidRequest
        If ``value`` is empty or not a valid network in CIDR notation.
    """

    if not value:
        raise InvalidRequest("CIDR value cannot be empty")
    try:
        return ipaddress.ip_network(value, strict=True)
    except ValueError as exc:
        raise InvalidRequest(f"invalid CIDR '{value}': {exc}") from exc


@dataclass
class NodePoolRecord:
    """A named group of nodes spanning one or more availability zones."""

    name: str
    cluster_id: str
    availability_zones: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    deleting: bool = False
    finalizers: List[str] = field(default_factory=list)
    resource_version: int = 0

    @property
    def assigned_cidr(self) -> Optional[str]:
        return keys.assigned_cidr(self.annotations)

    def add_finalizer(self, finalizer: str) -> bool:
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True


@dataclass
class SubnetSpec:
    """Subnet descriptor published on the cluster network record."""

    cidr_block: str
    availability_zone: str
    is_public: bool = False
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class ClusterNetworkRecord:
    """The shared network of a cluster: its primary range and subnet list."""

    name: str
    cluster_id: str
    vpc_id: str
    vpc_cidr: str
    subnets: List[SubnetSpec] = field(default_factory=list)
    resource_version: int = 0

    def has_subnet(self, cidr: Network) -> bool:
        """Return ``True`` if a descriptor for exactly ``cidr`` is present."""

        for subnet in self.subnets:
            try:
                existing = ipaddress.ip_network(subnet.cidr_block, strict=False)
            except ValueError:
                continue
            if existing == cidr:
                return True
        return False


@dataclass(frozen=True)
class CidrAssociation:
    """A range associated with a cloud network (VPC)."""

    association_id: str
    cidr_block: str
    vpc_id: str = ""


@dataclass
class Lease:
    """Time-bounded grant backing the cluster allocation lock."""

    name: str
    holder: str
    acquired_at: float
    renewed_at: float
    duration: float
    resource_version: int = 0

    def expired(self, now: float) -> bool:
        return self.renewed_at + self.duration <= now


@dataclass(frozen=True)
class AllocationSettings:
    """Operator-wide allocation knobs supplied at startup."""

    parent_cidr: str = DEFAULT_PARENT_CIDR
    subnet_prefix_length: int = DEFAULT_SUBNET_PREFIX_LENGTH

    def __post_init__(self) -> None:
        parent = parse_cidr(self.parent_cidr)
        if not parent.prefixlen <= self.subnet_prefix_length <= parent.max_prefixlen:
            raise InvalidRequest(
                f"subnet prefix /{self.subnet_prefix_length} must be between "
                f"/{parent.prefixlen} and /{parent.max_prefixlen} for parent {parent}"
            )

    @property
    def parent_network(self) -> Network:
        return parse_cidr(self.parent_cidr)
