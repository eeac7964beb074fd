"""Integration layer between the subnet allocation core and its surroundings.

The core service never talks to a control plane directly.  This package
defines the collaborator contracts it relies on (an object store with
compare-and-swap writes and a cloud network API), ships in-memory and
JSON-file implementations of them, and provides the reconcile driver that
owns the node pool finalizer lifecycle.
"""

from .reconciler import NodePoolReconciler, ReconcileResult  # noqa: F401

__all__ = [
    "NodePoolReconciler",
    "ReconcileResult",
]
