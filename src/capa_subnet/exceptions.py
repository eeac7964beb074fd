"""Error taxonomy shared by the allocator, the service and its collaborators."""

from __future__ import annotations


class SubnetOperatorError(Exception):
    """Base class for every error raised by the subnet operator.

    ``transient`` marks failures that are expected to clear on their own
    (cloud hiccups, lost optimistic-concurrency races, lock contention).
    Every failure is retried on the next reconcile cycle either way; the flag
    only changes how loudly the watcher reports it.
    """

    transient = False


class NotFound(SubnetOperatorError):
    """A record the operation depends on does not exist."""


class ClusterNotFound(NotFound):
    def __init__(self, cluster_id: str) -> None:
        super().__init__(f"no cluster network record found for cluster '{cluster_id}'")
        self.cluster_id = cluster_id


class NodePoolNotFound(NotFound):
    def __init__(self, name: str) -> None:
        super().__init__(f"node pool '{name}' does not exist")
        self.name = name


class AmbiguousOwner(SubnetOperatorError):
    def __init__(self, cluster_id: str, count: int) -> None:
        super().__init__(
            f"expected 1 cluster network record for cluster '{cluster_id}' but found {count}"
        )
        self.cluster_id = cluster_id
        self.count = count


class InvalidRequest(SubnetOperatorError):
    """Malformed CIDR text, unsupported split factor or bad configuration."""


class AllocationExhausted(SubnetOperatorError):
    """No free range of the requested size is left in the parent range."""


class ProviderError(SubnetOperatorError):
    """The cloud network API rejected or failed a call."""

    transient = True


class PersistenceConflict(SubnetOperatorError):
    """A record was modified concurrently; re-read and try again."""

    transient = True


class LockError(SubnetOperatorError):
    """A cluster allocation lease could not be acquired or released."""

    transient = True
