"""CRUD adapter over a provider plugin.

Generated controllers never talk to a provider directly; they call a
:class:`ProviderAdapter`. The adapter hides the plugin transport and
classifies every failure as :class:`~kfgen.exceptions.TransientPluginError`
(retry with backoff), :class:`~kfgen.exceptions.PermanentPluginError`
(surface and stop) or :class:`~kfgen.exceptions.ResourceNotFound`.

:class:`HttpProviderAdapter` speaks a small JSON protocol to a plugin
sidecar::

    POST   /resources/{type}        {"config": {...}}  -> {"id": "...", "state": {...}}
    GET    /resources/{type}/{id}                      -> {"state": {...}}
    PATCH  /resources/{type}/{id}   {"changes": {...}} -> {"state": {...}}
    DELETE /resources/{type}/{id}                      -> 204

One :class:`httpx.AsyncClient` (and so one connection pool) is shared by
every controller and worker; httpx clients are safe for concurrent use.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx

from kfgen.exceptions import PermanentPluginError, ResourceNotFound, TransientPluginError
from kfgen.models import AdapterConfig
from kfgen.output import get_output
from kfgen.runtime.record import utcnow
from kfgen.runtime.types import dumps_wire, loads_wire

# Status codes that mean "try again later" rather than "you are wrong".
_TRANSIENT_STATUS = frozenset({408, 409, 425, 429})


@dataclass(frozen=True)
class CreateResult:
    """Identifier and observed state returned by a successful create."""

    id: str
    state: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """CRUD operations the reconciler needs from a provider plugin."""

    @abstractmethod
    async def create(self, resource: str, config: dict[str, Any]) -> CreateResult:
        """Create an external resource of type *resource* from wire-level *config*."""

    @abstractmethod
    async def read(self, resource: str, external_id: str) -> dict[str, Any]:
        """Return the observed state, raising ``ResourceNotFound`` if it is gone."""

    @abstractmethod
    async def update(
        self, resource: str, external_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply only *changes* and return the observed state."""

    @abstractmethod
    async def delete(self, resource: str, external_id: str) -> None:
        """Delete the resource; an already-absent resource is not an error."""

    async def aclose(self) -> None:
        """Release connections held by the adapter."""


class HttpProviderAdapter(ProviderAdapter):
    """:class:`ProviderAdapter` over the plugin's HTTP endpoint.

    Args:
        config: Endpoint, timeout, pool size and credentials.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Example::

        adapter = HttpProviderAdapter(AdapterConfig(base_url="http://plugin:8700"))
        result = await adapter.create("wavefront_alert", {"name": "cpu-high"})
        await adapter.aclose()
    """

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or AdapterConfig()
        headers = {"Accept": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            headers=headers,
            limits=httpx.Limits(max_connections=self._config.max_connections),
            transport=transport,
        )

    async def __aenter__(self) -> HttpProviderAdapter:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #

    async def create(self, resource: str, config: dict[str, Any]) -> CreateResult:
        body = await self._request("POST", f"/resources/{resource}", {"config": config})
        external_id = body.get("id")
        if not external_id:
            raise PermanentPluginError(f"Plugin created {resource} without returning an id")
        return CreateResult(id=str(external_id), state=body.get("state") or {})

    async def read(self, resource: str, external_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/resources/{resource}/{external_id}")
        return body.get("state") or {}

    async def update(
        self, resource: str, external_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        body = await self._request(
            "PATCH", f"/resources/{resource}/{external_id}", {"changes": changes}
        )
        return body.get("state") or {}

    async def delete(self, resource: str, external_id: str) -> None:
        try:
            await self._request("DELETE", f"/resources/{resource}/{external_id}")
        except ResourceNotFound:
            get_output().debug(f"{resource}/{external_id} already absent")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """Send one request and classify its outcome.

        Raises:
            ResourceNotFound: On 404.
            TransientPluginError: On timeouts, connection failures, 408, 409,
                425, 429 and 5xx.
            PermanentPluginError: On any other 4xx, or an unreadable body.
        """
        headers = {}
        content = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            content = dumps_wire(payload)

        get_output().debug(f"plugin {method} {path}")
        try:
            response = await self._client.request(method, path, content=content, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientPluginError(f"{method} {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientPluginError(f"{method} {path} failed: {exc}") from exc

        self._raise_for_status(method, path, response)

        if not response.content:
            return {}
        try:
            body = loads_wire(response.content)
        except json.JSONDecodeError as exc:
            raise PermanentPluginError(f"{method} {path}: response is not JSON") from exc
        if not isinstance(body, dict):
            raise PermanentPluginError(f"{method} {path}: expected a JSON object")
        return body

    def _raise_for_status(self, method: str, path: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        msg = f"{method} {path}: HTTP {status}"
        detail = _error_detail(response)
        if detail:
            msg = f"{msg}: {detail}"

        if status == 404:
            raise ResourceNotFound(msg)
        if status in _TRANSIENT_STATUS or status >= 500:
            raise TransientPluginError(msg, retry_after=_retry_after(response))
        raise PermanentPluginError(msg)


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:200] if response.text else ""
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("error") or detail.get("detail") or "")
    return str(detail)


def _retry_after(response: httpx.Response) -> Optional[float]:
    """Parse ``Retry-After`` as delta-seconds or an HTTP date."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - utcnow()).total_seconds())
