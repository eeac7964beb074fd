"""Cluster-scoped lease lock built on compare-and-swap store writes.

The lease is advisory: it serializes the read-decide-write section of a
subnet allocation across every process sharing the same store.  A holder
that crashes simply stops renewing, and the lease becomes available again
once ``duration`` seconds have passed.
"""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from typing import TYPE_CHECKING, Callable, Iterator

from . import keys
from .config import Lease
from .exceptions import LockError, PersistenceConflict, SubnetOperatorError

if TYPE_CHECKING:  # pragma: no cover
    from subnet_operator.clients.base import ObjectStore

LOG = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = 15.0
DEFAULT_RETRY_PERIOD = 0.5
DEFAULT_ACQUIRE_TIMEOUT = 10.0


class LeaseLock:
    """Acquire and release per-cluster allocation leases.

    Parameters
    ----------
    store:
        Object store holding the lease records.
    holder_identity:
        Human readable prefix for the holder field, typically the hostname.
        Every acquisition appends a unique token so concurrent threads of one
        process never mistake each other's lease for their own.
    lease_duration:
        Seconds a lease stays valid without renewal.
    retry_period:
        Seconds to wait between acquisition attempts while the lease is held
        elsewhere.
    acquire_timeout:
        Seconds after which :meth:`acquire` gives up with :class:`LockError`.
    clock, sleep:
        Injection points for tests.
    """

    def __init__(
        self,
        store: "ObjectStore",
        holder_identity: str,
        *,
        lease_duration: float = DEFAULT_LEASE_DURATION,
        retry_period: float = DEFAULT_RETRY_PERIOD,
        acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if lease_duration <= 0:
            raise ValueError("lease_duration must be positive")
        self._store = store
        self._identity = holder_identity
        self._lease_duration = lease_duration
        self._retry_period = retry_period
        self._acquire_timeout = acquire_timeout
        self._clock = clock
        self._sleep = sleep

    def acquire(self, cluster_id: str) -> Lease:
        name = keys.lease_name(cluster_id)
        holder = f"{self._identity}-{uuid.uuid4().hex[:12]}"
        deadline = self._clock() + self._acquire_timeout

        while True:
            now = self._clock()
            try:
                lease = self._try_acquire(name, holder, now)
            except PersistenceConflict:
                LOG.debug("lost race for lease %s, retrying", name)
                lease = None
            except SubnetOperatorError as exc:
                raise LockError(f"failed to acquire lease {name}: {exc}") from exc
            if lease is not None:
                LOG.debug("acquired lease %s as %s", name, holder)
                return lease
            if now >= deadline:
                raise LockError(
                    f"timed out after {self._acquire_timeout}s waiting for lease {name}"
                )
            self._sleep(self._retry_period)

    def _try_acquire(self, name: str, holder: str, now: float) -> Lease | None:
        current = self._store.get_lease(name)
        if current is None:
            lease = Lease(
                name=name,
                holder=holder,
                acquired_at=now,
                renewed_at=now,
                duration=self._lease_duration,
            )
            return self._store.put_lease(lease)

        if not current.expired(now):
            LOG.debug("lease %s held by %s", name, current.holder)
            return None

        LOG.info("taking over expired lease %s from %s", name, current.holder)
        current.holder = holder
        current.acquired_at = now
        current.renewed_at = now
        current.duration = self._lease_duration
        return self._store.put_lease(current)

    def renew(self, lease: Lease) -> Lease:
        """Extend ``lease`` and confirm it is still ours.

        Callers renew right before a write that relies on the lease.  Raises
        :class:`LockError` once the lease is no longer ours, and the write
        must then be abandoned.
        """

        now = self._clock()
        try:
            current = self._store.get_lease(lease.name)
        except SubnetOperatorError as exc:
            raise LockError(f"failed to renew lease {lease.name}: {exc}") from exc
        if current is None or current.holder != lease.holder:
            raise LockError(f"lease {lease.name} is no longer held by {lease.holder}")
        if current.expired(now):
            raise LockError(f"lease {lease.name} expired before it was renewed")

        current.renewed_at = now
        try:
            renewed = self._store.put_lease(current)
        except SubnetOperatorError as exc:
            raise LockError(f"failed to renew lease {lease.name}: {exc}") from exc
        lease.renewed_at = renewed.renewed_at
        lease.resource_version = renewed.resource_version
        LOG.debug("renewed lease %s", lease.name)
        return lease

    def release(self, lease: Lease) -> None:
        """Release ``lease`` if it is still ours.  Safe to call repeatedly."""

        try:
            current = self._store.get_lease(lease.name)
            if current is None or current.holder != lease.holder:
                LOG.debug("lease %s no longer held by %s", lease.name, lease.holder)
                return
            self._store.delete_lease(current)
        except PersistenceConflict:
            LOG.debug("lease %s changed while releasing; leaving it", lease.name)
        except SubnetOperatorError as exc:
            raise LockError(f"failed to release lease {lease.name}: {exc}") from exc
        else:
            LOG.debug("released lease %s", lease.name)

    @contextlib.contextmanager
    def held(self, cluster_id: str) -> Iterator[Lease]:
        lease = self.acquire(cluster_id)
        try:
            yield lease
        finally:
            self.release(lease)
