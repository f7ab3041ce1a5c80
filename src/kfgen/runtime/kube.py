"""Kubernetes API server implementation of :class:`~kfgen.runtime.store.ObjectStore`.

Custom resources go through :class:`kubernetes_asyncio.client.CustomObjectsApi`:

* ``list_*_custom_object`` -- list, and watch via :class:`kubernetes_asyncio.watch.Watch`
* ``get_*_custom_object`` -- get
* ``replace_*_custom_object_status`` -- status subresource update
* ``replace_*_custom_object`` -- finalizers

Both writes carry ``metadata.resourceVersion``, so the API server answers
409 when the object advanced and the store raises
:class:`~kfgen.exceptions.ConflictError`.

Credentials come from :class:`~kfgen.models.KubeConfig`: an explicit server
and token, the service account mounted into the pod, or a kubeconfig file.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from kubernetes_asyncio import client, watch
from kubernetes_asyncio import config as k8s_config
from kubernetes_asyncio.client.rest import ApiException
from kubernetes_asyncio.config.config_exception import ConfigException

from kfgen.exceptions import ConfigError, ConflictError, StoreError
from kfgen.models import KubeConfig
from kfgen.output import get_output
from kfgen.runtime.scheme import KindInfo, Scheme
from kfgen.runtime.store import EventType, ManagedObject, ObjectKey, ObjectStore, WatchEvent
from kfgen.runtime.types import dumps_wire

# Server-side timeout of one watch request; the stream is reopened after it.
_WATCH_TIMEOUT_SECONDS = 300
_WATCH_RETRY_DELAY = 2.0

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


async def load_client_configuration(config: KubeConfig) -> client.Configuration:
    """Build the API client configuration described by *config*.

    An explicit ``server`` wins; otherwise ``in_cluster`` loads the pod's
    service account, and anything else loads the kubeconfig file
    (``config.kubeconfig``, else ``$KUBECONFIG`` or ``~/.kube/config``).

    Raises:
        ConfigError: If the credentials cannot be loaded.
    """
    configuration = client.Configuration()
    try:
        if config.server:
            configuration.host = config.server
        elif config.in_cluster:
            k8s_config.load_incluster_config(client_configuration=configuration)
        else:
            await k8s_config.load_kube_config(
                config_file=config.kubeconfig,
                context=config.context,
                client_configuration=configuration,
            )
    except (ConfigException, OSError) as exc:
        raise ConfigError(f"Cannot load Kubernetes credentials: {exc}") from exc

    if config.ca_file:
        configuration.ssl_ca_cert = config.ca_file
    if not config.verify_ssl:
        configuration.verify_ssl = False
    return configuration


class KubernetesObjectStore(ObjectStore):
    """:class:`ObjectStore` backed by the Kubernetes API server.

    The API client is created on first use, so constructing the store never
    touches the network.

    Args:
        scheme: Registered kinds; supplies group, version and plural for
            every call.
        config: Credentials and namespace scope.
        api: Ready-made ``CustomObjectsApi`` (tests pass a double).
        watch_factory: Creates the watch helper; defaults to
            :class:`kubernetes_asyncio.watch.Watch`.
    """

    def __init__(
        self,
        scheme: Scheme,
        config: Optional[KubeConfig] = None,
        api: Optional[client.CustomObjectsApi] = None,
        watch_factory: Callable[[], Any] = watch.Watch,
    ) -> None:
        self._scheme = scheme
        self._config = config or KubeConfig()
        self._api = api
        self._api_client: Optional[client.ApiClient] = None
        self._connect_lock = asyncio.Lock()
        self._watch_factory = watch_factory
        self._watch_tasks: list[asyncio.Task[None]] = []

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def list(self, kind: str) -> list[ManagedObject]:
        info = self._scheme.lookup(kind)
        api = await self._custom_objects()
        namespace = self._config.namespace
        if namespace:
            body = await self._call(
                f"list {info.plural}",
                api.list_namespaced_custom_object(
                    info.group, info.version, namespace, info.plural
                ),
            )
        else:
            body = await self._call(
                f"list {info.plural}",
                api.list_cluster_custom_object(info.group, info.version, info.plural),
            )
        return [self._to_object(info, item) for item in body.get("items") or []]

    async def get(self, key: ObjectKey) -> Optional[ManagedObject]:
        info = self._scheme.lookup(key.kind)
        api = await self._custom_objects()
        if key.namespace:
            call = api.get_namespaced_custom_object(
                info.group, info.version, key.namespace, info.plural, key.name
            )
        else:
            call = api.get_cluster_custom_object(info.group, info.version, info.plural, key.name)
        try:
            body = await self._call(f"get {key}", call)
        except _NotFound:
            return None
        return self._to_object(info, body)

    def watch(self, kinds: list[str]) -> _KubeWatch:
        events: asyncio.Queue[WatchEvent] = asyncio.Queue()
        for kind in kinds:
            info = self._scheme.lookup(kind)
            self._watch_tasks.append(asyncio.create_task(self._watch_kind(info, events)))
        return _KubeWatch(events)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def update_status(self, obj: ManagedObject, status: dict[str, Any]) -> ManagedObject:
        info = self._scheme.lookup(obj.kind, obj.api_version)
        api = await self._custom_objects()
        body = _plain(obj.to_dict())
        body["status"] = _plain(status)
        key = obj.key
        if key.namespace:
            call = api.replace_namespaced_custom_object_status(
                info.group, info.version, key.namespace, info.plural, key.name, body
            )
        else:
            call = api.replace_cluster_custom_object_status(
                info.group, info.version, info.plural, key.name, body
            )
        try:
            updated = await self._call(f"update status of {key}", call)
        except _NotFound as exc:
            raise ConflictError(f"{key} no longer exists") from exc
        return self._to_object(info, updated)

    async def update_finalizers(
        self, obj: ManagedObject, finalizers: list[str]
    ) -> Optional[ManagedObject]:
        info = self._scheme.lookup(obj.kind, obj.api_version)
        api = await self._custom_objects()
        body = _plain(obj.to_dict())
        body["metadata"]["finalizers"] = list(finalizers)
        key = obj.key
        if key.namespace:
            call = api.replace_namespaced_custom_object(
                info.group, info.version, key.namespace, info.plural, key.name, body
            )
        else:
            call = api.replace_cluster_custom_object(
                info.group, info.version, info.plural, key.name, body
            )
        try:
            updated = self._to_object(info, await self._call(f"update finalizers of {key}", call))
        except _NotFound:
            if not finalizers and obj.deletion_requested:
                return None
            raise ConflictError(f"{key} no longer exists") from None
        if not finalizers and updated.deletion_requested:
            return None
        return updated

    async def close(self) -> None:
        for task in self._watch_tasks:
            task.cancel()
        await asyncio.gather(*self._watch_tasks, return_exceptions=True)
        self._watch_tasks.clear()
        if self._api_client is not None:
            await self._api_client.close()
            self._api_client = None

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _custom_objects(self) -> client.CustomObjectsApi:
        async with self._connect_lock:
            if self._api is None:
                configuration = await load_client_configuration(self._config)
                self._api_client = client.ApiClient(configuration)
                if self._config.token:
                    self._api_client.set_default_header(
                        "Authorization", f"Bearer {self._config.token}"
                    )
                self._api = client.CustomObjectsApi(self._api_client)
        return self._api

    def _to_object(self, info: KindInfo, body: dict[str, Any]) -> ManagedObject:
        body.setdefault("apiVersion", info.api_version)
        body.setdefault("kind", info.kind)
        return ManagedObject.model_validate(body)

    async def _call(self, operation: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except ApiException as exc:
            if exc.status == 404:
                raise _NotFound(operation) from exc
            if exc.status == 409:
                raise ConflictError(f"{operation}: {_message(exc)}") from exc
            raise StoreError(f"{operation}: HTTP {exc.status}: {_message(exc)}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    async def _watch_kind(self, info: KindInfo, events: asyncio.Queue[WatchEvent]) -> None:
        """Follow one kind's watch stream forever, reconnecting as needed."""
        output = get_output()
        namespace = self._config.namespace
        resource_version: Optional[str] = None
        while True:
            api = await self._custom_objects()
            kwargs: dict[str, Any] = {"timeout_seconds": _WATCH_TIMEOUT_SECONDS}
            if resource_version:
                kwargs["resource_version"] = resource_version
            if namespace:
                func = api.list_namespaced_custom_object
                args: tuple[str, ...] = (info.group, info.version, namespace, info.plural)
            else:
                func = api.list_cluster_custom_object
                args = (info.group, info.version, info.plural)
            try:
                async with self._watch_factory().stream(func, *args, **kwargs) as stream:
                    async for event in stream:
                        resource_version = self._dispatch(info, event, events)
            except ApiException as exc:
                resource_version = None
                if exc.status == 410:
                    # Our resourceVersion is too old; relist from scratch.
                    output.debug(f"watch {info.plural}: {_message(exc)}")
                    continue
                output.warning(f"Watch of {info.plural} failed: HTTP {exc.status}")
                await asyncio.sleep(_WATCH_RETRY_DELAY)
            except _TRANSPORT_ERRORS as exc:
                output.warning(f"Watch of {info.plural} interrupted: {exc}")
                resource_version = None
                await asyncio.sleep(_WATCH_RETRY_DELAY)

    def _dispatch(
        self, info: KindInfo, event: dict[str, Any], events: asyncio.Queue[WatchEvent]
    ) -> Optional[str]:
        """Queue one watch event; return the resourceVersion to resume from."""
        event_type = event.get("type")
        body = event.get("raw_object") or event.get("object") or {}
        version = (body.get("metadata") or {}).get("resourceVersion")
        if event_type == "ERROR":
            get_output().debug(f"watch {info.plural}: {body.get('message', 'error event')}")
            return None
        if event_type == "BOOKMARK":
            return version
        if event_type in (EventType.ADDED.value, EventType.MODIFIED.value, EventType.DELETED.value):
            events.put_nowait(WatchEvent(EventType(event_type), self._to_object(info, body)))
        return version


class _KubeWatch:
    def __init__(self, events: asyncio.Queue[WatchEvent]) -> None:
        self._events = events

    def __aiter__(self) -> _KubeWatch:
        return self

    async def __anext__(self) -> WatchEvent:
        return await self._events.get()


class _NotFound(StoreError):
    pass


def _plain(value: Any) -> Any:
    """JSON-native copy of *value*; lossless numbers become floats or strings."""
    return json.loads(dumps_wire(value))


def _message(exc: ApiException) -> str:
    if exc.body:
        try:
            body = json.loads(exc.body)
        except (TypeError, ValueError):
            return str(exc.body)[:200]
        if isinstance(body, dict):
            return str(body.get("message") or body.get("reason") or "")
    return str(exc.reason or "")
