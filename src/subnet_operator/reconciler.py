"""Reconcile driver wiring node pool records to the subnet service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from capa_subnet import keys
from capa_subnet.exceptions import NodePoolNotFound
from capa_subnet.service import SubnetService

from .clients.base import ObjectStore

LOG = logging.getLogger(__name__)

DEFAULT_REQUEUE_AFTER = 300.0


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome reported back to the scheduler."""

    name: str
    action: str
    requeue_after: Optional[float] = None


class NodePoolReconciler:
    """Drive :class:`SubnetService` for one node pool and own its finalizer.

    A live pool is reconciled and then gains the finalizer, a pool marked for
    deletion is reclaimed and then loses it.  Either way the pool asks to be
    revisited after ``requeue_after`` seconds, which is the operator's only
    retry mechanism.  Errors propagate to the caller.
    """

    def __init__(
        self,
        store: ObjectStore,
        service: SubnetService,
        *,
        requeue_after: float = DEFAULT_REQUEUE_AFTER,
        watch_filter: Optional[str] = None,
    ) -> None:
        self._store = store
        self._service = service
        self._requeue_after = requeue_after
        self._watch_filter = watch_filter

    def reconcile(self, name: str) -> ReconcileResult:
        try:
            pool = self._store.get_node_pool(name)
        except NodePoolNotFound:
            LOG.debug("node pool %s no longer exists", name)
            return ReconcileResult(name, "absent")

        if not keys.matches_watch_filter(pool.labels, self._watch_filter):
            LOG.debug(
                "node pool %s lacks %s=%s, ignoring",
                name,
                keys.CLUSTER_WATCH_FILTER_LABEL,
                self._watch_filter,
            )
            return ReconcileResult(name, "ignored")

        if pool.deleting:
            self._service.delete(pool)
            self._remove_finalizer(name)
            return ReconcileResult(name, "deleted", self._requeue_after)

        outcome = self._service.reconcile(pool)
        LOG.debug("node pool %s reconciled with %s", name, outcome.cidr)
        self._add_finalizer(name)
        return ReconcileResult(name, "reconciled", self._requeue_after)

    def _add_finalizer(self, name: str) -> None:
        try:
            pool = self._store.get_node_pool(name)
        except NodePoolNotFound:
            LOG.debug("node pool %s vanished before its finalizer was added", name)
            return
        if pool.deleting:
            # Deletion was requested mid-reconcile; the next pass reclaims it.
            LOG.debug("node pool %s is being deleted, not adding finalizer", name)
            return
        if pool.add_finalizer(keys.FINALIZER_NAME):
            self._store.update_node_pool(pool)
            LOG.info("added finalizer to node pool %s", name)

    def _remove_finalizer(self, name: str) -> None:
        try:
            pool = self._store.get_node_pool(name)
        except NodePoolNotFound:
            return
        if pool.remove_finalizer(keys.FINALIZER_NAME):
            self._store.update_node_pool(pool)
            LOG.info("removed finalizer from node pool %s", name)
