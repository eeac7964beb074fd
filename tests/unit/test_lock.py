import threading

import pytest

from capa_subnet import keys
from capa_subnet.exceptions import LockError, ProviderError
from capa_subnet.lock import LeaseLock
from subnet_operator.clients.memory import InMemoryObjectStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def build_lock(store, clock, identity="agent-1", **kwargs):
    return LeaseLock(store, identity, clock=clock, sleep=clock.sleep, **kwargs)


def test_acquire_and_release():
    store = InMemoryObjectStore()
    clock = FakeClock()
    lock = build_lock(store, clock)

    lease = lock.acquire("demo")

    assert lease.name == keys.lease_name("demo")
    assert lease.holder.startswith("agent-1-")
    assert store.get_lease(lease.name) is not None

    lock.release(lease)
    assert store.get_lease(lease.name) is None


def test_release_is_idempotent():
    store = InMemoryObjectStore()
    clock = FakeClock()
    lock = build_lock(store, clock)
    lease = lock.acquire("demo")

    lock.release(lease)
    lock.release(lease)

    assert store.get_lease(lease.name) is None


def test_held_lease_blocks_until_timeout():
    store = InMemoryObjectStore()
    clock = FakeClock()
    holder = build_lock(store, clock, lease_duration=60.0)
    contender = build_lock(
        store, clock, identity="agent-2", acquire_timeout=5.0, retry_period=1.0
    )
    holder.acquire("demo")

    with pytest.raises(LockError):
        contender.acquire("demo")


def test_leases_are_scoped_per_cluster():
    store = InMemoryObjectStore()
    clock = FakeClock()
    lock = build_lock(store, clock, acquire_timeout=0.0)

    first = lock.acquire("demo")
    second = lock.acquire("other")

    assert first.name != second.name


def test_expired_lease_is_taken_over():
    store = InMemoryObjectStore()
    clock = FakeClock()
    crashed = build_lock(store, clock, lease_duration=15.0)
    survivor = build_lock(store, clock, identity="agent-2", acquire_timeout=30.0)
    stale = crashed.acquire("demo")

    clock.now += 16.0
    lease = survivor.acquire("demo")

    assert lease.holder.startswith("agent-2-")
    # the crashed holder's late release must not drop the new lease
    crashed.release(stale)
    assert store.get_lease(lease.name).holder == lease.holder


def test_waiting_contender_acquires_after_release():
    store = InMemoryObjectStore()
    clock = FakeClock()
    holder = build_lock(store, clock)
    first = holder.acquire("demo")

    def release_on_sleep(seconds):
        clock.now += seconds
        holder.release(first)

    contender = LeaseLock(store, "agent-2", clock=clock, sleep=release_on_sleep)

    lease = contender.acquire("demo")

    assert lease.holder.startswith("agent-2-")


def test_held_context_manager_releases_on_error():
    store = InMemoryObjectStore()
    lock = LeaseLock(store, "agent-1")

    with pytest.raises(RuntimeError):
        with lock.held("demo"):
            assert store.get_lease(keys.lease_name("demo")) is not None
            raise RuntimeError("boom")

    assert store.get_lease(keys.lease_name("demo")) is None


def test_store_failure_is_lock_error():
    class BrokenStore(InMemoryObjectStore):
        def get_lease(self, name):
            raise ProviderError("store unavailable")

    lock = LeaseLock(BrokenStore(), "agent-1")

    with pytest.raises(LockError):
        lock.acquire("demo")


def test_threads_never_hold_the_same_lease_together():
    store = InMemoryObjectStore()
    inside = []
    overlaps = []
    guard = threading.Lock()

    def worker(identity):
        lock = LeaseLock(store, identity, retry_period=0.001, acquire_timeout=10.0)
        for _ in range(20):
            with lock.held("demo"):
                with guard:
                    inside.append(identity)
                    if len(inside) > 1:
                        overlaps.append(tuple(inside))
                with guard:
                    inside.remove(identity)

    threads = [threading.Thread(target=worker, args=(f"agent-{i}",)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []


def test_rejects_non_positive_lease_duration():
    with pytest.raises(ValueError):
        LeaseLock(InMemoryObjectStore(), "agent-1", lease_duration=0)


def test_renew_extends_lease():
    store = InMemoryObjectStore()
    clock = FakeClock()
    lock = build_lock(store, clock, lease_duration=15.0)
    lease = lock.acquire("demo")

    clock.now += 10.0
    lock.renew(lease)
    clock.now += 10.0

    assert not store.get_lease(lease.name).expired(clock.now)
    assert lease.renewed_at == clock.now - 10.0
    lock.release(lease)
    assert store.get_lease(lease.name) is None


def test_renew_fails_after_takeover():
    store = InMemoryObjectStore()
    clock = FakeClock()
    slow = build_lock(store, clock, lease_duration=15.0)
    other = build_lock(store, clock, identity="agent-2")
    stale = slow.acquire("demo")

    clock.now += 20.0
    other.acquire("demo")

    with pytest.raises(LockError):
        slow.renew(stale)


def test_renew_fails_once_expired():
    store = InMemoryObjectStore()
    clock = FakeClock()
    lock = build_lock(store, clock, lease_duration=15.0)
    lease = lock.acquire("demo")

    clock.now += 15.0

    with pytest.raises(LockError):
        lock.renew(lease)
