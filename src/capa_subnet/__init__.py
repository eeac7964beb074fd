"""Node pool subnet allocation core.

This package hosts the pieces of the subnet operator that carry real
invariants: no range is handed to two node pools of one cluster, and a range
is never forgotten before the cloud network has let go of it.  It focuses on:

* deterministic first-fit search and even splitting of address ranges
  (:mod:`capa_subnet.allocator`);
* a cluster-scoped lease lock serializing allocation decisions
  (:mod:`capa_subnet.lock`); and
* the allocate/associate/publish and reclaim workflows
  (:class:`capa_subnet.service.SubnetService`).

The package is pure Python.  Object stores and cloud APIs are passed in as
collaborators so unit tests can run without a control plane.
"""

from .service import ReconcileOutcome, SubnetService  # noqa: F401

__all__ = ["ReconcileOutcome", "SubnetService"]
