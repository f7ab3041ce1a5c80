"""One reconciliation pass of a managed object.

:class:`Reconciler` executes a finite state machine over
:class:`~kfgen.runtime.phases.Phase`:

* **Deletion intent** (``deletionTimestamp`` set): ``-> Deleting``, plugin
  Delete (not-found counts as success), ``-> Deleted``, finalizer removed.
* **No external id**: ``Pending -> Creating``, plugin Create. Success stores
  the id and the applied Spec hash and moves to ``Ready``. A transient
  failure goes back to ``Pending`` with ``retry_count`` incremented and a
  backoff requeue; a permanent failure goes back to ``Pending`` with the
  Spec hash recorded as *blocked* and a ``Stalled`` condition. A blocked
  object is not retried until its Spec changes.
* **Spec hash changed, or drift recorded**: ``Ready -> Updating``, plugin
  Update with only the changed attributes, Read, ``-> Ready``.
* **In sync, drift interval elapsed**: Read. Divergence from the last
  applied Spec is recorded in ``drifted_fields`` and a ``Drifted``
  condition; the next pass re-asserts the Spec through Update. Drifted
  values are never copied into the Spec. A vanished external resource
  clears the id so the next pass recreates it.

Mutating plugin calls run to completion once issued, and their outcome is
always persisted. Reads are raced against the pass's cancellation token and
abandoned as soon as the object is deleted or its Spec changes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from kfgen.exceptions import (
    ConflictError,
    PermanentPluginError,
    ReconcileCancelled,
    ResourceNotFound,
    TransientPluginError,
)
from kfgen.models import RuntimeConfig
from kfgen.output import get_output
from kfgen.runtime.controller import ResourceController
from kfgen.runtime.phases import Phase
from kfgen.runtime.queue import Backoff
from kfgen.runtime.record import (
    DRIFTED,
    READY,
    STALLED,
    Condition,
    ReconciliationRecord,
    format_time,
    parse_time,
    remove_condition,
    set_condition,
    spec_hash,
    utcnow,
)
from kfgen.runtime.store import ManagedObject, ObjectStore

T = TypeVar("T")

# Status writes recording a completed plugin mutation are retried on conflict.
_FORCED_WRITE_ATTEMPTS = 3


@dataclass
class ReconcileContext:
    """Cancellation token and clock of one pass.

    The manager cancels the context when the object is deleted or its Spec
    changes while the pass is running.
    """

    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    clock: Callable[[], datetime] = utcnow

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> None:
        """Raise :class:`ReconcileCancelled` if the pass was cancelled."""
        if self.cancelled:
            raise ReconcileCancelled("reconcile pass cancelled")

    async def race(self, call: Awaitable[T]) -> T:
        """Await *call* unless the pass is cancelled first."""
        if self.cancelled:
            if asyncio.iscoroutine(call):
                call.close()
            raise ReconcileCancelled("reconcile pass cancelled")
        task = asyncio.ensure_future(call)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise ReconcileCancelled("reconcile pass cancelled during a read")
        return task.result()


@dataclass
class ReconcileResult:
    """Outcome of a pass, used by the manager to schedule the next one.

    ``requeue_after`` of ``None`` means "wait for the next watch event".
    """

    phase: Phase
    requeue_after: Optional[float] = None
    cancelled: bool = False
    conflict: bool = False
    error: Optional[str] = None


class _Pass:
    """Mutable state of one reconcile pass."""

    def __init__(self, obj: ManagedObject, ctx: ReconcileContext) -> None:
        self.obj = obj
        self.ctx = ctx
        self.record = ReconciliationRecord.from_status(obj.status)
        self.conditions = [
            Condition.model_validate(c) for c in obj.status.get("conditions") or []
        ]
        reserved = {"conditions", "observedGeneration", "reconciliation"}
        self.observed = {k: v for k, v in obj.status.items() if k not in reserved}

    def condition(self, type_: str, status: bool, reason: str, message: str = "") -> None:
        self.conditions = set_condition(
            self.conditions,
            type_,
            status,
            reason,
            message,
            now=self.ctx.clock(),
            generation=self.obj.metadata.generation,
        )

    def clear(self, type_: str) -> None:
        self.conditions = remove_condition(self.conditions, type_)

    def status(self) -> dict[str, Any]:
        status = dict(self.observed)
        status["conditions"] = [
            c.model_dump(by_alias=True, exclude_none=True) for c in self.conditions
        ]
        status["observedGeneration"] = self.obj.metadata.generation
        status["reconciliation"] = self.record.to_status()
        return status


class Reconciler:
    """Drives one controller's objects through the reconcile state machine.

    Args:
        controller: Generated controller supplying bindings and the adapter.
        store: Object store used for status and finalizer writes.
        config: Finalizer name, drift interval and backoff tuning.
    """

    def __init__(
        self,
        controller: ResourceController,
        store: ObjectStore,
        config: Optional[RuntimeConfig] = None,
    ) -> None:
        self.controller = controller
        self.store = store
        self.config = config or RuntimeConfig()
        self.backoff = Backoff(self.config.backoff_base, self.config.backoff_max)

    @property
    def finalizer(self) -> str:
        return self.config.finalizer

    async def reconcile(
        self, obj: ManagedObject, ctx: Optional[ReconcileContext] = None
    ) -> ReconcileResult:
        """Run one pass for *obj*.

        Plugin failures and store conflicts are reflected in the returned
        :class:`ReconcileResult` and in the object's conditions; other store
        errors propagate.
        """
        ctx = ctx or ReconcileContext()
        state = _Pass(obj, ctx)
        try:
            if obj.deletion_requested:
                return await self._delete(state)
            return await self._apply(state)
        except ReconcileCancelled:
            get_output().debug(f"{obj.key}: pass cancelled")
            return ReconcileResult(phase=state.record.phase, cancelled=True)
        except ConflictError as exc:
            get_output().debug(f"{obj.key}: {exc}")
            return ReconcileResult(phase=state.record.phase, conflict=True, error=str(exc))

    # ------------------------------------------------------------------ #
    # Apply path
    # ------------------------------------------------------------------ #

    async def _apply(self, state: _Pass) -> ReconcileResult:
        obj, record = state.obj, state.record
        try:
            spec = self.controller.parse_spec(obj.spec)
            wire = self.controller.spec_to_wire(spec)
            digest = spec_hash(wire)
        except ValidationError as exc:
            return await self._invalid(state, _validation_message(exc))
        except (ValueError, TypeError) as exc:
            return await self._invalid(state, f"Spec cannot be serialized: {exc}")

        if record.blocked_hash == digest:
            return ReconcileResult(phase=record.phase)
        if record.blocked_hash is not None:
            record.blocked_hash = None
            record.retry_count = 0
        state.clear(STALLED)

        if self.finalizer not in obj.metadata.finalizers:
            state.ctx.check()
            updated = await self.store.update_finalizers(
                obj, [*obj.metadata.finalizers, self.finalizer]
            )
            if updated is not None:
                state.obj = updated

        if not record.external_id:
            return await self._create(state, wire, digest)
        if record.last_applied_hash != digest or record.drifted_fields:
            return await self._update(state, wire, digest)
        due = self._drift_due_in(state)
        if due <= 0:
            return await self._check_drift(state)
        return ReconcileResult(phase=record.phase, requeue_after=due)

    async def _create(self, state: _Pass, wire: dict[str, Any], digest: str) -> ReconcileResult:
        record = state.record
        record.move_to(Phase.CREATING)
        state.ctx.check()
        try:
            result = await self.controller.adapter.create(self.controller.resource_name, wire)
        except TransientPluginError as exc:
            record.move_to(Phase.PENDING)
            return await self._transient(state, exc)
        except PermanentPluginError as exc:
            record.move_to(Phase.PENDING)
            return await self._permanent(state, exc, digest)

        get_output().info(f"{state.obj.key}: created {self.controller.resource_name} {result.id}")
        record.external_id = result.id
        state.observed.update(self.controller.status_from_state(result.state, result.id))
        self._applied(state, wire, digest)
        await self._persist(state, force=True)
        return ReconcileResult(phase=record.phase, requeue_after=self.config.drift_interval)

    async def _update(self, state: _Pass, wire: dict[str, Any], digest: str) -> ReconcileResult:
        record = state.record
        changes = self.controller.changed_fields(wire, record.last_applied)
        for key in record.drifted_fields:
            if key in wire:
                changes[key] = wire[key]
        record.move_to(Phase.UPDATING)
        state.ctx.check()
        assert record.external_id is not None
        try:
            if changes:
                await self.controller.adapter.update(
                    self.controller.resource_name, record.external_id, changes
                )
        except ResourceNotFound:
            return await self._vanished(state)
        except TransientPluginError as exc:
            record.move_to(Phase.READY)
            return await self._transient(state, exc)
        except PermanentPluginError as exc:
            record.move_to(Phase.READY)
            return await self._permanent(state, exc, digest)

        self._applied(state, wire, digest)
        try:
            observed = await state.ctx.race(
                self.controller.adapter.read(self.controller.resource_name, record.external_id)
            )
        except ReconcileCancelled:
            await self._persist(state, force=True)
            raise
        except ResourceNotFound:
            return await self._vanished(state)
        except (TransientPluginError, PermanentPluginError) as exc:
            get_output().warning(f"{state.obj.key}: status refresh failed: {exc}")
        else:
            state.observed.update(self.controller.status_from_state(observed, record.external_id))
            record.last_observed_at = format_time(state.ctx.clock())
        get_output().info(f"{state.obj.key}: updated {sorted(changes)}")
        await self._persist(state, force=True)
        return ReconcileResult(phase=record.phase, requeue_after=self.config.drift_interval)

    async def _check_drift(self, state: _Pass) -> ReconcileResult:
        record = state.record
        assert record.external_id is not None
        try:
            observed = await state.ctx.race(
                self.controller.adapter.read(self.controller.resource_name, record.external_id)
            )
        except ResourceNotFound:
            return await self._vanished(state)
        except TransientPluginError as exc:
            return await self._transient(state, exc)
        except PermanentPluginError as exc:
            state.condition(READY, False, "ReadFailed", str(exc))
            await self._persist(state)
            return ReconcileResult(
                phase=record.phase, requeue_after=self.config.drift_interval, error=str(exc)
            )

        record.move_to(Phase.READY)
        record.last_observed_at = format_time(state.ctx.clock())
        record.retry_count = 0
        state.observed.update(self.controller.status_from_state(observed, record.external_id))
        drifted = self.controller.drifted_fields(record.last_applied, observed)
        if drifted:
            get_output().warning(f"{state.obj.key}: external drift in {', '.join(drifted)}")
            record.drifted_fields = drifted
            state.condition(DRIFTED, True, "ExternalChange", f"Drifted: {', '.join(drifted)}")
            await self._persist(state)
            return ReconcileResult(phase=record.phase, requeue_after=0)
        state.condition(DRIFTED, False, "InSync")
        state.condition(READY, True, "Reconciled")
        await self._persist(state)
        return ReconcileResult(phase=record.phase, requeue_after=self.config.drift_interval)

    # ------------------------------------------------------------------ #
    # Delete path
    # ------------------------------------------------------------------ #

    async def _delete(self, state: _Pass) -> ReconcileResult:
        obj, record = state.obj, state.record
        if self.finalizer not in obj.metadata.finalizers:
            return ReconcileResult(phase=record.phase)

        if record.phase != Phase.DELETED:
            record.move_to(Phase.DELETING)
            if record.external_id:
                state.ctx.check()
                try:
                    await self.controller.adapter.delete(
                        self.controller.resource_name, record.external_id
                    )
                except ResourceNotFound:
                    pass
                except TransientPluginError as exc:
                    return await self._transient(state, exc)
                except PermanentPluginError as exc:
                    return await self._permanent(state, exc, record.last_applied_hash)
                get_output().info(
                    f"{obj.key}: deleted {self.controller.resource_name} {record.external_id}"
                )
            record.move_to(Phase.DELETED)
            record.external_id = None

        remaining = [f for f in obj.metadata.finalizers if f != self.finalizer]
        updated = await self.store.update_finalizers(obj, remaining)
        if updated is not None:
            state.obj = updated
            await self._persist(state)
        return ReconcileResult(phase=Phase.DELETED)

    # ------------------------------------------------------------------ #
    # Shared outcomes
    # ------------------------------------------------------------------ #

    def _applied(self, state: _Pass, wire: dict[str, Any], digest: str) -> None:
        record = state.record
        record.move_to(Phase.READY)
        record.last_applied = wire
        record.last_applied_hash = digest
        record.retry_count = 0
        record.blocked_hash = None
        record.drifted_fields = []
        record.last_observed_at = format_time(state.ctx.clock())
        state.condition(READY, True, "Reconciled")
        state.condition(DRIFTED, False, "InSync")
        state.clear(STALLED)

    async def _invalid(self, state: _Pass, message: str) -> ReconcileResult:
        state.condition(READY, False, "InvalidSpec", message)
        state.condition(STALLED, True, "InvalidSpec", message)
        await self._persist(state)
        return ReconcileResult(phase=state.record.phase, error=message)

    async def _vanished(self, state: _Pass) -> ReconcileResult:
        record = state.record
        get_output().warning(
            f"{state.obj.key}: external resource {record.external_id} is gone; recreating"
        )
        record.move_to(Phase.PENDING)
        record.external_id = None
        record.last_applied = None
        record.last_applied_hash = None
        record.drifted_fields = []
        state.condition(READY, False, "ExternalResourceMissing")
        await self._persist(state)
        return ReconcileResult(phase=record.phase, requeue_after=0)

    async def _transient(self, state: _Pass, exc: TransientPluginError) -> ReconcileResult:
        record = state.record
        record.retry_count += 1
        delay = self.backoff.delay(record.retry_count)
        if exc.retry_after is not None:
            delay = max(delay, exc.retry_after)
        get_output().warning(f"{state.obj.key}: {exc} (retry {record.retry_count} in {delay:g}s)")
        state.condition(READY, False, "TransientError", str(exc))
        await self._persist(state)
        return ReconcileResult(phase=record.phase, requeue_after=delay, error=str(exc))

    async def _permanent(
        self, state: _Pass, exc: PermanentPluginError, digest: Optional[str]
    ) -> ReconcileResult:
        record = state.record
        record.blocked_hash = digest
        get_output().error(f"{state.obj.key}: {exc}")
        state.condition(READY, False, "PermanentError", str(exc))
        state.condition(STALLED, True, "PermanentError", str(exc))
        await self._persist(state)
        return ReconcileResult(phase=record.phase, error=str(exc))

    async def _persist(self, state: _Pass, force: bool = False) -> None:
        """Write Status if it changed.

        Unless *force* is set (a mutating plugin call already happened and
        its result must not be lost) a cancelled pass writes nothing.
        """
        if not force:
            state.ctx.check()
        status = state.status()
        if status == state.obj.status:
            return
        for attempt in range(_FORCED_WRITE_ATTEMPTS):
            try:
                state.obj = await self.store.update_status(state.obj, status)
                return
            except ConflictError:
                if not force or attempt == _FORCED_WRITE_ATTEMPTS - 1:
                    raise
            latest = await self.store.get(state.obj.key)
            if latest is None:
                raise ConflictError(f"{state.obj.key} disappeared before its status was saved")
            state.obj = latest

    def _drift_due_in(self, state: _Pass) -> float:
        observed_at = state.record.last_observed_at
        if not observed_at:
            return 0.0
        elapsed = (state.ctx.clock() - parse_time(observed_at)).total_seconds()
        return self.config.drift_interval - elapsed


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:5]:
        location = ".".join(str(p) for p in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)
