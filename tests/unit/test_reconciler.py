import pytest

from capa_subnet import keys
from capa_subnet.config import ClusterNetworkRecord, NodePoolRecord
from capa_subnet.exceptions import ClusterNotFound, ProviderError
from capa_subnet.lock import LeaseLock
from capa_subnet.service import SubnetService
from subnet_operator import NodePoolReconciler
from subnet_operator.clients.memory import InMemoryNetworkProvider, InMemoryObjectStore


class FlakyProvider(InMemoryNetworkProvider):
    def __init__(self):
        super().__init__()
        self.failures = 0

    def associate_cidr(self, vpc_id, cidr):
        if self.failures:
            self.failures -= 1
            raise ProviderError("request limit exceeded")
        return super().associate_cidr(vpc_id, cidr)


def build_reconciler(watch_filter=None):
    store = InMemoryObjectStore()
    provider = FlakyProvider()
    store.create_cluster_network(
        ClusterNetworkRecord(
            name="demo-network", cluster_id="demo", vpc_id="vpc-1", vpc_cidr="10.10.0.0/20"
        )
    )
    provider.create_vpc("vpc-1", "10.10.0.0/20")
    service = SubnetService(store, provider, LeaseLock(store, "test"))
    reconciler = NodePoolReconciler(
        store, service, requeue_after=300.0, watch_filter=watch_filter
    )
    return store, provider, reconciler


def test_reconcile_adds_finalizer_and_requeues():
    store, _, reconciler = build_reconciler()
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))

    result = reconciler.reconcile("pool-a")

    assert result.action == "reconciled"
    assert result.requeue_after == 300.0
    pool = store.get_node_pool("pool-a")
    assert pool.finalizers == [keys.FINALIZER_NAME]
    assert pool.assigned_cidr == "10.10.16.0/24"


def test_finalizer_is_added_once():
    store, _, reconciler = build_reconciler()
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))

    reconciler.reconcile("pool-a")
    version = store.get_node_pool("pool-a").resource_version
    reconciler.reconcile("pool-a")

    pool = store.get_node_pool("pool-a")
    assert pool.finalizers == [keys.FINALIZER_NAME]
    assert pool.resource_version == version


def test_failed_reconcile_does_not_add_finalizer_and_resumes():
    store, provider, reconciler = build_reconciler()
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))
    provider.failures = 1

    with pytest.raises(ProviderError):
        reconciler.reconcile("pool-a")
    pool = store.get_node_pool("pool-a")
    assert pool.finalizers == []
    assert pool.assigned_cidr == "10.10.16.0/24"

    reconciler.reconcile("pool-a")
    pool = store.get_node_pool("pool-a")
    assert pool.finalizers == [keys.FINALIZER_NAME]
    assert pool.assigned_cidr == "10.10.16.0/24"


def test_deleting_pool_is_reclaimed_and_released():
    store, provider, reconciler = build_reconciler()
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))
    reconciler.reconcile("pool-a")
    store.mark_node_pool_deleting("pool-a")

    result = reconciler.reconcile("pool-a")

    assert result.action == "deleted"
    assert store.list_node_pools() == []
    assert [a.cidr_block for a in provider.list_cidr_associations("vpc-1")] == [
        "10.10.0.0/20"
    ]
    assert reconciler.reconcile("pool-a").action == "absent"


def test_failed_reclaim_keeps_finalizer():
    store, _, reconciler = build_reconciler()
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))
    reconciler.reconcile("pool-a")
    store.mark_node_pool_deleting("pool-a")
    for record in store.list_cluster_networks("demo"):
        record.cluster_id = "gone"
        store.update_cluster_network(record)

    with pytest.raises(ClusterNotFound):
        reconciler.reconcile("pool-a")

    pool = store.get_node_pool("pool-a")
    assert pool.finalizers == [keys.FINALIZER_NAME]
    assert pool.assigned_cidr == "10.10.16.0/24"


def test_watch_filter_ignores_unlabelled_pools():
    store, _, reconciler = build_reconciler(watch_filter="capi")
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))
    store.create_node_pool(
        NodePoolRecord(
            "pool-b",
            "demo",
            ["eu-west-1a"],
            labels={keys.CLUSTER_WATCH_FILTER_LABEL: "capi"},
        )
    )

    assert reconciler.reconcile("pool-a").action == "ignored"
    assert reconciler.reconcile("pool-b").action == "reconciled"
    assert store.get_node_pool("pool-a").assigned_cidr is None
    assert store.get_node_pool("pool-b").assigned_cidr == "10.10.16.0/24"


class DeletedDuringReconcile(SubnetService):
    """Deletion of the pool is requested while its reconcile is running."""

    def __init__(self, store, *args, **kwargs):
        super().__init__(store, *args, **kwargs)
        self.store = store

    def reconcile(self, pool):
        outcome = super().reconcile(pool)
        self.store.mark_node_pool_deleting(pool.name)
        return outcome


def test_finalizer_is_not_added_to_pool_being_deleted():
    store, provider, _ = build_reconciler()
    service = DeletedDuringReconcile(store, provider, LeaseLock(store, "test"))
    reconciler = NodePoolReconciler(store, service)
    store.create_node_pool(
        NodePoolRecord("pool-a", "demo", ["eu-west-1a"], finalizers=["example.com/other"])
    )

    result = reconciler.reconcile("pool-a")

    assert result.action == "reconciled"
    pool = store.get_node_pool("pool-a")
    assert pool.deleting
    assert pool.finalizers == ["example.com/other"]


def test_pool_removed_during_reconcile_is_not_an_error():
    store, provider, _ = build_reconciler()
    service = DeletedDuringReconcile(store, provider, LeaseLock(store, "test"))
    reconciler = NodePoolReconciler(store, service)
    store.create_node_pool(NodePoolRecord("pool-a", "demo", ["eu-west-1a"]))

    assert reconciler.reconcile("pool-a").action == "reconciled"
    assert reconciler.reconcile("pool-a").action == "absent"
