"""Per-object reconciliation bookkeeping stored in the object's Status.

Two structures live in every managed object's ``status``:

* ``conditions`` -- a list of :class:`Condition` entries (``Ready``,
  ``Stalled``, ``Drifted``) in the usual Kubernetes shape.
* ``reconciliation`` -- a :class:`ReconciliationRecord` holding the phase,
  the plugin-assigned external id and the hash of the last applied Spec.

Keys are camelCase on the wire; Python attributes are snake_case.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kfgen.runtime.phases import Phase, transition
from kfgen.runtime.types import canonical_json

# Condition types written by the reconciler.
READY = "Ready"
STALLED = "Stalled"
DRIFTED = "Drifted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_time(moment: datetime) -> str:
    """RFC 3339 timestamp with second precision, as Kubernetes writes them."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Condition(_CamelModel):
    """A single observation about an object's reconciliation health."""

    type: str
    status: str = Field(description="'True', 'False' or 'Unknown'")
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[str] = None
    observed_generation: Optional[int] = None


def get_condition(conditions: list[Condition], type_: str) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == type_:
            return condition
    return None


def set_condition(
    conditions: list[Condition],
    type_: str,
    status: bool,
    reason: str,
    message: str = "",
    *,
    now: Optional[datetime] = None,
    generation: Optional[int] = None,
) -> list[Condition]:
    """Return a copy of *conditions* with *type_* set.

    ``lastTransitionTime`` only moves when the condition's status flips;
    updating the reason or message of an unchanged status keeps it.
    """
    status_text = "True" if status else "False"
    existing = get_condition(conditions, type_)
    if existing is not None and existing.status == status_text:
        transition_time = existing.last_transition_time
    else:
        transition_time = format_time(now or utcnow())
    updated = Condition(
        type=type_,
        status=status_text,
        reason=reason,
        message=message,
        last_transition_time=transition_time,
        observed_generation=generation,
    )
    result = [c for c in conditions if c.type != type_]
    result.append(updated)
    return sorted(result, key=lambda c: c.type)


def remove_condition(conditions: list[Condition], type_: str) -> list[Condition]:
    return [c for c in conditions if c.type != type_]


class ReconciliationRecord(_CamelModel):
    """What the engine remembers between passes for one object.

    ``blocked_hash`` is the Spec hash a permanent plugin error rejected;
    while the Spec still hashes to it, the object is not retried.
    """

    phase: Phase = Phase.PENDING
    external_id: Optional[str] = None
    last_applied_hash: Optional[str] = None
    last_applied: Optional[dict[str, Any]] = None
    retry_count: int = 0
    blocked_hash: Optional[str] = None
    drifted_fields: list[str] = Field(default_factory=list)
    last_observed_at: Optional[str] = None

    @classmethod
    def from_status(cls, status: Optional[dict[str, Any]]) -> ReconciliationRecord:
        raw = (status or {}).get("reconciliation")
        if not raw:
            return cls()
        return cls.model_validate(raw)

    def to_status(self) -> dict[str, Any]:
        # python mode keeps Decimal values in last_applied intact
        data = self.model_dump(by_alias=True, exclude_none=True, mode="python")
        data["phase"] = self.phase.value
        return data

    def move_to(self, phase: Phase) -> None:
        """Advance :attr:`phase`, enforcing the transition table."""
        self.phase = transition(self.phase, phase)


def spec_hash(wire: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a wire-level Spec."""
    digest = hashlib.sha256(canonical_json(wire).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
