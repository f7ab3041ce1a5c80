"""Controller manager: watch events in, reconcile passes out.

The manager owns one :class:`~kfgen.runtime.queue.WorkQueue` shared by all
registered controllers and a pool of asyncio worker tasks. A slow plugin
call occupies one worker; every other object keeps being reconciled by the
rest of the pool.

Event handling:

* an object seen for the first time, a ``generation`` change, or a new
  deletion intent enqueues the object;
* status-only and finalizer-only updates (our own writes) are ignored;
* a ``generation`` change or deletion intent for an object whose pass is in
  flight cancels that pass, and the queue re-runs it once it returns.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from kfgen.exceptions import KfgenError
from kfgen.models import RuntimeConfig
from kfgen.output import get_output
from kfgen.runtime.controller import ResourceController
from kfgen.runtime.queue import Backoff, WorkQueue
from kfgen.runtime.reconciler import ReconcileContext, Reconciler, ReconcileResult
from kfgen.runtime.scheme import Scheme
from kfgen.runtime.store import EventType, ManagedObject, ObjectKey, ObjectStore, WatchEvent


class ControllerManager:
    """Runs registered controllers against an object store.

    Args:
        store: Where managed objects live.
        config: Worker count, drift interval, backoff and finalizer.
        scheme: Registry the generated ``add_to_scheme`` functions fill.

    Example::

        manager = ControllerManager(store, RuntimeConfig(workers=8))
        provider_wavefront_controller.setup(manager, adapter)
        await manager.run()
    """

    def __init__(
        self,
        store: ObjectStore,
        config: Optional[RuntimeConfig] = None,
        scheme: Optional[Scheme] = None,
    ) -> None:
        self.store = store
        self.config = config or RuntimeConfig()
        self.scheme = scheme or Scheme()
        self.queue: WorkQueue[ObjectKey] = WorkQueue(
            Backoff(self.config.backoff_base, self.config.backoff_max)
        )
        self._reconcilers: dict[str, Reconciler] = {}
        self._generations: dict[ObjectKey, int] = {}
        self._deleting: set[ObjectKey] = set()
        self._in_flight: dict[ObjectKey, ReconcileContext] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register(self, controller: ResourceController) -> Reconciler:
        """Attach *controller* to the manager and add its kind to the scheme."""
        kind = controller.kind
        if kind in self._reconcilers:
            raise KfgenError(f"A controller for kind {kind!r} is already registered")
        if kind not in self.scheme:
            self.scheme.add_known_type(
                controller.group,
                controller.version,
                kind,
                controller.plural,
                controller.api_type,
            )
        reconciler = Reconciler(controller, self.store, self.config)
        self._reconcilers[kind] = reconciler
        get_output().debug(f"Registered {controller!r}")
        return reconciler

    @property
    def kinds(self) -> list[str]:
        return sorted(self._reconcilers)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Subscribe to changes, enqueue existing objects and start workers."""
        if not self._reconcilers:
            raise KfgenError("No controllers registered")
        events = self.store.watch(self.kinds)
        for kind in self.kinds:
            for obj in await self.store.list(kind):
                self.handle_event(WatchEvent(EventType.ADDED, obj))
        self._tasks.append(asyncio.create_task(self._consume(events)))
        for index in range(self.config.workers):
            self._tasks.append(asyncio.create_task(self._worker(index)))
        get_output().info(
            f"Controller manager started: {len(self._reconcilers)} kind(s), "
            f"{self.config.workers} worker(s)"
        )

    async def run(self) -> None:
        """Start and block until :meth:`stop` is called."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self._shutdown()

    def request_stop(self) -> None:
        """Ask :meth:`run` to return; usable from a signal handler."""
        self._stopped.set()

    async def stop(self) -> None:
        """Signal :meth:`run` to return; safe to call more than once."""
        self._stopped.set()
        if not self._tasks:
            return
        await self._shutdown()

    async def _shutdown(self) -> None:
        self.queue.shutdown()
        for ctx in self._in_flight.values():
            ctx.cancel()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def handle_event(self, event: WatchEvent) -> None:
        """Decide whether *event* needs a reconcile pass."""
        obj = event.object
        key = obj.key
        if obj.kind not in self._reconcilers:
            return

        if event.type == EventType.DELETED:
            self._forget(key)
            return

        generation = obj.metadata.generation
        previous = self._generations.get(key)
        spec_changed = previous is not None and generation != previous
        newly_deleting = obj.deletion_requested and key not in self._deleting
        self._generations[key] = generation
        if obj.deletion_requested:
            self._deleting.add(key)

        if previous is None or spec_changed or newly_deleting:
            ctx = self._in_flight.get(key)
            if ctx is not None and (spec_changed or newly_deleting):
                get_output().debug(f"{key}: cancelling in-flight pass")
                ctx.cancel()
            self.queue.add(key)

    async def _consume(self, events: AsyncIterator[WatchEvent]) -> None:
        async for event in events:
            self.handle_event(event)

    def _forget(self, key: ObjectKey) -> None:
        self._generations.pop(key, None)
        self._deleting.discard(key)
        self.queue.forget(key)
        ctx = self._in_flight.get(key)
        if ctx is not None:
            ctx.cancel()

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #

    async def _worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            except Exception as exc:
                # One broken object must not take the worker down.
                get_output().error(f"{key}: reconcile failed: {exc}")
                self.queue.add_rate_limited(key)
            finally:
                self.queue.done(key)

    async def process(self, key: ObjectKey) -> Optional[ReconcileResult]:
        """Run one pass for *key* and schedule the next one."""
        obj = await self.store.get(key)
        if obj is None:
            self._forget(key)
            return None
        ctx = ReconcileContext()
        self._in_flight[key] = ctx
        try:
            result = await self._reconcilers[key.kind].reconcile(obj, ctx)
        finally:
            self._in_flight.pop(key, None)
        self._schedule(key, obj, result)
        return result

    def _schedule(self, key: ObjectKey, obj: ManagedObject, result: ReconcileResult) -> None:
        if result.cancelled:
            self.queue.add(key)
        elif result.conflict:
            self.queue.add_rate_limited(key)
        elif result.requeue_after is not None:
            if result.error is None:
                self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        else:
            self.queue.forget(key)
        get_output().debug(
            f"{key}: phase={result.phase.value} generation={obj.metadata.generation} "
            f"requeue={result.requeue_after}"
        )
