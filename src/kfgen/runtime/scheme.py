"""Explicit registry of generated API kinds.

Generated API packages expose ``add_to_scheme(scheme)``; the runtime
builds one :class:`Scheme` per process and passes it around instead of
relying on import-time registration.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from pydantic import BaseModel

from kfgen.exceptions import KfgenError


class KindInfo(NamedTuple):
    group: str
    version: str
    kind: str
    plural: str
    model: type[BaseModel]

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


class Scheme:
    """Maps ``(group, version, kind)`` to the generated model class."""

    def __init__(self) -> None:
        self._kinds: dict[tuple[str, str, str], KindInfo] = {}

    def add_known_type(
        self, group: str, version: str, kind: str, plural: str, model: type[BaseModel]
    ) -> None:
        key = (group, version, kind)
        existing = self._kinds.get(key)
        if existing is not None and existing.model is not model:
            raise KfgenError(f"{group}/{version} {kind} is already registered")
        self._kinds[key] = KindInfo(group, version, kind, plural, model)

    def lookup(self, kind: str, api_version: Optional[str] = None) -> KindInfo:
        """Find a registered kind, optionally pinned to an ``apiVersion``."""
        matches = [
            info
            for info in self._kinds.values()
            if info.kind == kind and (api_version is None or info.api_version == api_version)
        ]
        if not matches:
            raise KfgenError(f"Kind {kind!r} is not registered")
        if len(matches) > 1:
            versions = ", ".join(sorted(info.api_version for info in matches))
            raise KfgenError(f"Kind {kind!r} is ambiguous ({versions}); pass an apiVersion")
        return matches[0]

    def kinds(self) -> list[KindInfo]:
        return sorted(self._kinds.values(), key=lambda info: (info.group, info.version, info.kind))

    def __contains__(self, kind: object) -> bool:
        return any(info.kind == kind for info in self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)
