"""Declarative object store consumed by the controller runtime.

:class:`ObjectStore` is the slice of the Kubernetes API the reconciler
needs: list, get, watch, and two writes (status and finalizers) guarded by
optimistic concurrency. :class:`InMemoryObjectStore` implements it in
process for tests and local runs; :mod:`kfgen.runtime.kube` implements it
against a real API server.
"""

from __future__ import annotations

import asyncio
import copy
import enum
import itertools
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

from kfgen.exceptions import ConflictError, StoreError
from kfgen.runtime.record import format_time, utcnow


class ObjectKey(NamedTuple):
    kind: str
    namespace: Optional[str]
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class ObjectMeta(BaseModel):
    """Standard object metadata; unknown keys are preserved."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    generation: int = 0
    deletion_timestamp: Optional[str] = Field(default=None, alias="deletionTimestamp")
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ManagedObject(BaseModel):
    """An untyped cluster object as the store returns it.

    ``spec`` and ``status`` stay plain dicts; the controller parses ``spec``
    into its generated model.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    api_version: str = Field(alias="apiVersion")
    kind: str
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.kind, self.metadata.namespace, self.metadata.name)

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EventType(str, enum.Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(NamedTuple):
    type: EventType
    object: ManagedObject


class ObjectStore(ABC):
    """Read and write access to managed objects."""

    @abstractmethod
    async def list(self, kind: str) -> list[ManagedObject]:
        """All objects of *kind*."""

    @abstractmethod
    async def get(self, key: ObjectKey) -> Optional[ManagedObject]:
        """The current object, or ``None`` if it no longer exists."""

    @abstractmethod
    def watch(self, kinds: list[str]) -> AsyncIterator[WatchEvent]:
        """Stream changes to objects of *kinds*.

        The subscription starts when this method returns, so a caller that
        lists after subscribing misses nothing.
        """

    @abstractmethod
    async def update_status(self, obj: ManagedObject, status: dict[str, Any]) -> ManagedObject:
        """Replace ``status``.

        Raises:
            ConflictError: If the stored object changed since *obj* was read.
        """

    @abstractmethod
    async def update_finalizers(
        self, obj: ManagedObject, finalizers: list[str]
    ) -> Optional[ManagedObject]:
        """Replace ``metadata.finalizers``.

        Returns ``None`` when removing the last finalizer of an object being
        deleted released it from the store.

        Raises:
            ConflictError: If the stored object changed since *obj* was read.
        """

    async def close(self) -> None:
        """Release connections held by the store."""


# ---------------------------------------------------------------------- #
# In-memory implementation
# ---------------------------------------------------------------------- #


class _Subscription:
    """Queue-backed async iterator handed out by :meth:`InMemoryObjectStore.watch`."""

    def __init__(self, store: InMemoryObjectStore, kinds: list[str]) -> None:
        self._store = store
        self.kinds = set(kinds)
        self.queue: asyncio.Queue[Optional[WatchEvent]] = asyncio.Queue()

    def __aiter__(self) -> _Subscription:
        return self

    async def __anext__(self) -> WatchEvent:
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        self._store._subscriptions.discard(self)
        self.queue.put_nowait(None)


class InMemoryObjectStore(ObjectStore):
    """Process-local store with the same concurrency semantics as the API server.

    Every write bumps ``resourceVersion``; ``generation`` only moves when
    ``spec`` changes. Objects with a deletion timestamp are kept until
    their last finalizer is removed.

    Example::

        store = InMemoryObjectStore()
        store.apply({"apiVersion": "wavefront.kubeform.com/v1alpha1",
                     "kind": "Alert", "metadata": {"name": "cpu-high"},
                     "spec": {"name": "cpu-high"}})
    """

    def __init__(self) -> None:
        self._objects: dict[ObjectKey, dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._subscriptions: set[_Subscription] = set()

    # ------------------------------------------------------------------ #
    # Test and local-run helpers
    # ------------------------------------------------------------------ #

    def apply(self, body: dict[str, Any]) -> ManagedObject:
        """Create an object or replace its spec, like ``kubectl apply``."""
        incoming = ManagedObject.model_validate(copy.deepcopy(body))
        key = incoming.key
        current = self._objects.get(key)
        if current is None:
            stored = incoming.to_dict()
            stored["metadata"]["generation"] = 1
            stored["metadata"]["resourceVersion"] = self._next_version()
            stored.setdefault("status", {})
            self._objects[key] = stored
            return self._emit(EventType.ADDED, stored)
        if current["metadata"].get("deletionTimestamp"):
            raise StoreError(f"{key} is being deleted")
        if current.get("spec") != incoming.spec:
            current["spec"] = copy.deepcopy(incoming.spec)
            current["metadata"]["generation"] = current["metadata"].get("generation", 0) + 1
        current["metadata"]["resourceVersion"] = self._next_version()
        return self._emit(EventType.MODIFIED, current)

    def request_deletion(self, key: ObjectKey) -> Optional[ManagedObject]:
        """Mark *key* for deletion; objects without finalizers go immediately."""
        current = self._objects.get(key)
        if current is None:
            return None
        if not current["metadata"].get("finalizers"):
            del self._objects[key]
            self._emit(EventType.DELETED, current)
            return None
        if not current["metadata"].get("deletionTimestamp"):
            current["metadata"]["deletionTimestamp"] = format_time(utcnow())
            current["metadata"]["resourceVersion"] = self._next_version()
        return self._emit(EventType.MODIFIED, current)

    # ------------------------------------------------------------------ #
    # ObjectStore
    # ------------------------------------------------------------------ #

    async def list(self, kind: str) -> list[ManagedObject]:
        return [
            ManagedObject.model_validate(copy.deepcopy(body))
            for key, body in sorted(self._objects.items(), key=lambda item: str(item[0]))
            if key.kind == kind
        ]

    async def get(self, key: ObjectKey) -> Optional[ManagedObject]:
        body = self._objects.get(key)
        return ManagedObject.model_validate(copy.deepcopy(body)) if body is not None else None

    def watch(self, kinds: list[str]) -> _Subscription:
        subscription = _Subscription(self, kinds)
        self._subscriptions.add(subscription)
        return subscription

    async def update_status(self, obj: ManagedObject, status: dict[str, Any]) -> ManagedObject:
        current = self._current(obj)
        current["status"] = copy.deepcopy(status)
        current["metadata"]["resourceVersion"] = self._next_version()
        return self._emit(EventType.MODIFIED, current)

    async def update_finalizers(
        self, obj: ManagedObject, finalizers: list[str]
    ) -> Optional[ManagedObject]:
        current = self._current(obj)
        current["metadata"]["finalizers"] = list(finalizers)
        if not finalizers and current["metadata"].get("deletionTimestamp"):
            del self._objects[obj.key]
            self._emit(EventType.DELETED, current)
            return None
        current["metadata"]["resourceVersion"] = self._next_version()
        return self._emit(EventType.MODIFIED, current)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _current(self, obj: ManagedObject) -> dict[str, Any]:
        current = self._objects.get(obj.key)
        if current is None:
            raise ConflictError(f"{obj.key} no longer exists")
        if current["metadata"].get("resourceVersion") != obj.metadata.resource_version:
            raise ConflictError(
                f"{obj.key} was modified (resourceVersion "
                f"{obj.metadata.resource_version} -> {current['metadata'].get('resourceVersion')})"
            )
        return current

    def _emit(self, event_type: EventType, body: dict[str, Any]) -> ManagedObject:
        snapshot = ManagedObject.model_validate(copy.deepcopy(body))
        for subscription in self._subscriptions:
            if snapshot.kind in subscription.kinds:
                subscription.queue.put_nowait(WatchEvent(event_type, snapshot))
        return snapshot
