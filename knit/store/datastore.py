"""
Tiered Datastore.

One get/set/delete interface over three tiers:

    tier 1  in-memory cache only
    tier 2  local indexed store, cache in front
    tier 3  remote service (http or realtime websocket), cache in front

Reads from the cache resolve data dependencies: ``Get`` descriptors
embedded in a dataset (``{"key": "x", "ref": ["get", settings, "y"]}``)
are replaced by the referenced dataset before the read returns. When the
referenced datastore is still under construction, the dependency waits on
a per-read waitlist and is resolved once that datastore is available.

Usage:
    store = await context.store({"store_name": "chat"})
    await store.set({"key": "greeting", "text": "hi"})
    await store.get("greeting")            # {"key": "greeting", "text": "hi"}
    await store.get({"text": "hi"})        # [{"key": "greeting", ...}]
    await store.delete("greeting")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from knit.dependencies import Get, as_dependency
from knit.helpers import (
    cache_key,
    clone,
    generate_key,
    integrate,
    is_dataset,
    is_subset,
    is_valid_key,
)
from knit.lifecycle import Lifecycle, call_hook

from .remote import RealtimeChannel, RemoteStoreClient, is_error_sentinel
from .settings import StoreSettings

if TYPE_CHECKING:
    from knit.runtime.context import KnitContext

logger = logging.getLogger(__name__)


class Datastore(Lifecycle):
    """
    Datastore for one settings signature.

    Created by the StoreRegistry; never construct directly. Two settings
    objects with the same signature share one Datastore and therefore one
    local cache.
    """

    def __init__(
        self,
        settings: StoreSettings,
        signature: str,
        context: KnitContext,
        *,
        local: dict[Any, dict[str, Any]] | None = None,
        remote: RemoteStoreClient | None = None,
    ):
        self.signature = signature
        self._settings = settings
        self._context = context
        self._local: dict[Any, dict[str, Any]] = local if local is not None else {}
        self._remote = remote
        self._channel: RealtimeChannel | None = None
        self._hook_tasks: set[asyncio.Task] = set()
        self.on_change = settings.on_change

    def __repr__(self) -> str:
        return f"<Datastore tier={self.tier} {self.signature}>"

    @property
    def tier(self) -> int:
        return self._settings.tier

    @property
    def store_name(self) -> str | None:
        return self._settings.store_name

    def attach_channel(self, channel: RealtimeChannel) -> None:
        self._channel = channel

    async def init(self) -> None:
        """One-time initialization: start listening for realtime pushes."""
        if self._channel is not None:
            self._channel.listen()

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
        if self._remote is not None:
            await self._remote.close()

    # =========================================================================
    # get / set / delete
    # =========================================================================

    async def get(self, key_or_query: Any = None) -> Any:
        """
        Get a dataset by key, or every dataset matching a query.

        Args:
            key_or_query: Dataset key, or a query dict (every query property
                must be present and equal in a match). None selects all.

        Returns:
            Dataset (None if missing) for a key, list of datasets for a query
        """
        if key_or_query is None:
            key_or_query = {}
        query = isinstance(key_or_query, dict)

        if self.tier == 3:
            if not query and self._has_local(key_or_query):
                return await self._read_local(key_or_query)

            response = await self._send({"key": key_or_query})
            if is_error_sentinel(response):
                logger.warning(f"[datastore] Remote get failed for {self.signature}: {response}")
                return None
            if is_dataset(response):
                self._set_local(clone(response))
            elif isinstance(response, list):
                for dataset in response:
                    if is_dataset(dataset):
                        self._set_local(clone(dataset))
            return response

        if self.tier == 2:
            indexed = self._context.indexed_store
            if query:
                for dataset in await indexed.get_all(self.store_name):
                    if not self._has_local(dataset.get("key")):
                        self._set_local(dataset)
                return await self._read_local(key_or_query)

            if not self._has_local(key_or_query):
                dataset = await indexed.get(self.store_name, key_or_query)
                if not is_dataset(dataset):
                    return None
                self._set_local(dataset)

        return await self._read_local(key_or_query)

    async def set(self, priodata: dict[str, Any]) -> dict[str, Any] | None:
        """
        Create or update a dataset.

        Missing keys are generated. An existing dataset is updated by
        integrating the priority data (dot-path properties address nested
        values); otherwise the priority data becomes the new dataset.

        Returns:
            The stored dataset, or None if the key is invalid or the remote
            side answered with an error sentinel
        """
        if not is_dataset(priodata):
            logger.warning(f"[datastore] Rejected non-dataset value: {priodata!r}")
            return None

        priodata = clone(priodata)
        if priodata.get("key") in (None, ""):
            priodata["key"] = generate_key()

        if not is_valid_key(priodata["key"]):
            logger.warning(f"[datastore] Rejected invalid dataset key: {priodata['key']!r}")
            return None

        if self.tier == 3:
            response = await self._send({"dataset": priodata})
            if not is_dataset(response):
                logger.warning(f"[datastore] Remote set failed for {self.signature}: {response!r}")
                return None
            return await self._update_local(response)

        if self.tier == 2:
            indexed = self._context.indexed_store
            if not self._has_local(priodata["key"]):
                stored = await indexed.get(self.store_name, priodata["key"])
                if is_dataset(stored):
                    self._set_local(stored)
            current = self._local.get(cache_key(priodata["key"]))
            merged = integrate(clone(priodata), clone(current)) if current else clone(priodata)
            await indexed.put(self.store_name, merged)

        return await self._update_local(priodata)

    async def delete(self, key: Any = None) -> Any:
        """
        Delete a dataset.

        On tier 1, no key clears the whole cache and returns its previous
        contents.

        Returns:
            The deleted dataset, or None if nothing was deleted
        """
        if self.tier == 3:
            response = await self._send({"del": key})
            if is_error_sentinel(response):
                logger.warning(f"[datastore] Remote delete failed for {self.signature}: {response}")
                return None
            self._delete_local(key)
            return response

        if self.tier == 2:
            indexed = self._context.indexed_store
            stored = None if self._has_local(key) else await indexed.get(self.store_name, key)
            await indexed.delete(self.store_name, key)
            deleted = self._delete_local(key)
            if deleted is None and is_dataset(stored):
                return stored
            return deleted

        return self._delete_local(key)

    def peek(self, key_or_query: Any = None) -> Any:
        """
        Read the local cache synchronously.

        Data dependencies are left unresolved.
        """
        if key_or_query is None or isinstance(key_or_query, dict):
            query = key_or_query or {}
            return [clone(d) for d in self._local.values() if is_subset(query, d)]
        return clone(self._local.get(cache_key(key_or_query)))

    # =========================================================================
    # Realtime pushes
    # =========================================================================

    def apply_push(self, message: Any) -> None:
        """Apply an unsolicited change notification from the remote side."""
        if message is None:
            logger.warning(f"[datastore] Ignored empty push on {self.signature}")
            return

        if is_dataset(message):
            if not is_valid_key(message.get("key")):
                logger.warning(f"[datastore] Ignored push with invalid key: {message!r}")
                return
            changed = self._integrate_local(clone(message))
        else:
            changed = self._delete_local(message)

        logger.debug(f"[datastore] Applied push on {self.signature}")
        if self.on_change is not None:
            task = asyncio.ensure_future(call_hook(self.on_change, clone(changed)))
            self._hook_tasks.add(task)
            task.add_done_callback(self._on_hook_done)

    def _on_hook_done(self, task: asyncio.Task) -> None:
        self._hook_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[datastore] on_change hook failed for {self.signature}: {error}", exc_info=error)

    # =========================================================================
    # Local cache
    # =========================================================================

    def _has_local(self, key: Any) -> bool:
        return cache_key(key) in self._local

    def _set_local(self, dataset: dict[str, Any]) -> None:
        if dataset.get("key") is not None:
            self._local[cache_key(dataset["key"])] = dataset

    def _integrate_local(self, priodata: dict[str, Any]) -> dict[str, Any]:
        k = cache_key(priodata["key"])
        if k in self._local:
            integrate(priodata, self._local[k])
        else:
            self._local[k] = priodata
        return self._local[k]

    async def _update_local(self, priodata: dict[str, Any]) -> dict[str, Any] | None:
        self._integrate_local(priodata)
        return await self._read_local(priodata["key"])

    def _delete_local(self, key: Any = None) -> Any:
        if key is None:
            previous, self._local = self._local, {}
            return previous
        return self._local.pop(cache_key(key), None)

    async def _read_local(self, key_or_query: Any) -> Any:
        if isinstance(key_or_query, dict):
            results = [clone(d) for d in self._local.values() if is_subset(key_or_query, d)]
            await asyncio.gather(*(self._solve_data_dependencies(d) for d in results))
            return results

        dataset = clone(self._local.get(cache_key(key_or_query)))
        if dataset is None:
            return None
        await self._solve_data_dependencies(dataset)
        return dataset

    # =========================================================================
    # Data dependencies
    # =========================================================================

    async def _solve_data_dependencies(self, dataset: Any) -> None:
        stores = self._context.stores
        waitlist: list[tuple[Any, Any, Get]] = []
        immediate: list[tuple[Any, Any, Get]] = []

        for container, slot, dependency in _find_data_dependencies(dataset):
            if stores.is_loading(dependency.settings):
                waitlist.append((container, slot, dependency))
            else:
                immediate.append((container, slot, dependency))

        await asyncio.gather(*(self._solve(*item) for item in immediate))

        while waitlist:
            await self._solve(*waitlist.pop())

    async def _solve(self, container: Any, slot: Any, dependency: Get) -> None:
        container[slot] = await self._context.get(dependency.settings, dependency.key)

    # =========================================================================
    # Remote
    # =========================================================================

    def _prepare(self, data: dict[str, Any]) -> dict[str, Any]:
        payload = dict(data)
        if self._settings.store_name:
            payload["storeName"] = self._settings.store_name
        if self._settings.db_name:
            payload["dbName"] = self._settings.db_name
        if self._settings.auth is not None:
            credentials = self._settings.auth()
            if credentials:
                payload["user"] = credentials.get("user")
                payload["token"] = credentials.get("token")
        return payload

    async def _send(self, data: dict[str, Any]) -> Any:
        payload = self._prepare(data)
        if self._channel is not None:
            self._channel.listen()
            return await self._channel.request(payload)
        return await self._remote.send(payload)


def _find_data_dependencies(value: Any) -> Iterator[tuple[Any, Any, Get]]:
    items = value.items() if isinstance(value, dict) else enumerate(value) if isinstance(value, list) else ()
    for slot, item in list(items):
        dependency = as_dependency(item)
        if isinstance(dependency, Get):
            yield value, slot, dependency
        elif dependency is None and isinstance(item, (dict, list)):
            yield from _find_data_dependencies(item)
