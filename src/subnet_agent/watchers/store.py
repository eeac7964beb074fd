"""Store-polling node pool watcher."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Event, Thread
from typing import Dict, Union

from capa_subnet.exceptions import SubnetOperatorError
from subnet_operator.clients.base import ObjectStore
from subnet_operator.reconciler import NodePoolReconciler, ReconcileResult

LOG = logging.getLogger(__name__)

PoolResult = Union[ReconcileResult, Exception]


class NodePoolWatcher(Thread):
    """Re-reconcile every node pool in the store on a fixed interval.

    Each pass runs regardless of how the previous one ended, which is what
    retries failed attempts.  Different pools are reconciled concurrently on
    a bounded worker pool; one pass finishes before the next starts, so a
    single watcher never runs the same pool twice at once.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconciler: NodePoolReconciler,
        interval: float,
        stop_event: Event,
        workers: int = 4,
    ) -> None:
        super().__init__(daemon=True)
        self._store = store
        self._reconciler = reconciler
        self._interval = interval
        self._stop_event = stop_event
        self._workers = workers

    def run(self) -> None:
        with ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="reconcile"
        ) as executor:
            while not self._stop_event.is_set():
                try:
                    self._poll(executor)
                except Exception:  # pragma: no cover - logged below
                    LOG.exception("node pool watcher encountered an error")
                self._stop_event.wait(self._interval)

    def poll(self) -> Dict[str, PoolResult]:
        """Run a single pass and return the result or error of each pool."""

        with ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="reconcile"
        ) as executor:
            return self._poll(executor)

    def _poll(self, executor: ThreadPoolExecutor) -> Dict[str, PoolResult]:
        names = [pool.name for pool in self._store.list_node_pools()]
        if not names:
            LOG.debug("no node pools to reconcile")
            return {}

        futures = {name: executor.submit(self._reconciler.reconcile, name) for name in names}
        results: Dict[str, PoolResult] = {}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except SubnetOperatorError as exc:
                level = logging.WARNING if exc.transient else logging.ERROR
                LOG.log(
                    level,
                    "reconcile of node pool %s failed (%s, retrying in %ss): %s",
                    name,
                    type(exc).__name__,
                    self._interval,
                    exc,
                )
                results[name] = exc
            except Exception as exc:
                LOG.exception("unexpected error reconciling node pool %s", name)
                results[name] = exc

        LOG.debug("reconciled %d node pools", len(names))
        return results
