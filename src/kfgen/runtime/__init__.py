"""Controller runtime -- the reconciliation engine behind generated controllers.

Generated controller modules subclass :class:`ResourceController`; everything
else here executes them:

* :mod:`~kfgen.runtime.reconciler` -- the per-object state machine.
* :mod:`~kfgen.runtime.manager` -- watch handling, work queue, worker pool.
* :mod:`~kfgen.runtime.adapter` -- CRUD adapter over the provider plugin.
* :mod:`~kfgen.runtime.store` / :mod:`~kfgen.runtime.kube` -- where managed
  objects live (in memory, or a Kubernetes API server).
* :mod:`~kfgen.runtime.record` -- conditions and the reconciliation record
  kept in each object's Status.
"""

from kfgen.runtime.adapter import CreateResult, HttpProviderAdapter, ProviderAdapter
from kfgen.runtime.controller import ResourceController
from kfgen.runtime.kube import KubernetesObjectStore
from kfgen.runtime.manager import ControllerManager
from kfgen.runtime.phases import Phase
from kfgen.runtime.queue import Backoff, WorkQueue
from kfgen.runtime.reconciler import ReconcileContext, Reconciler, ReconcileResult
from kfgen.runtime.record import Condition, ReconciliationRecord, spec_hash
from kfgen.runtime.scheme import Scheme
from kfgen.runtime.store import InMemoryObjectStore, ManagedObject, ObjectKey, ObjectMeta
from kfgen.runtime.types import Number

__all__ = [
    "Backoff",
    "Condition",
    "ControllerManager",
    "CreateResult",
    "HttpProviderAdapter",
    "InMemoryObjectStore",
    "KubernetesObjectStore",
    "ManagedObject",
    "Number",
    "ObjectKey",
    "ObjectMeta",
    "Phase",
    "ProviderAdapter",
    "ReconcileContext",
    "ReconcileResult",
    "Reconciler",
    "ReconciliationRecord",
    "ResourceController",
    "Scheme",
    "WorkQueue",
    "spec_hash",
]
