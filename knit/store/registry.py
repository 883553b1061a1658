"""
Store Registry.

Maps settings signatures to Datastores. While a datastore is being built
its signature maps to a Future, so dependents can tell "still loading"
from "absent" and wait instead of building a second copy.

Pure in-memory settings (no url, dbName or storeName) have the empty
signature "{}"; each of them gets a datastore of its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from knit.helpers import cache_key, clone, is_dataset

from .datastore import Datastore
from .remote import RealtimeChannel, RemoteStoreClient
from .settings import StoreSettings

if TYPE_CHECKING:
    from knit.runtime.context import KnitContext

logger = logging.getLogger(__name__)

EMPTY_SIGNATURE = "{}"


class StoreRegistry:
    """
    Registry of datastores, shared per signature.

    Example:
        store = await context.stores.get_or_create({"store_name": "chat"})
        same = await context.stores.get_or_create({"storeName": "chat", "local": {}})
        assert store is same
    """

    def __init__(self, context: KnitContext):
        self._context = context
        self._stores: dict[str, Datastore | asyncio.Future] = {}
        self._anonymous = 0

    async def get_or_create(self, settings: Any = None, *, delayed: bool = False) -> Datastore:
        """
        Get the datastore for the given settings, creating it if needed.

        Args:
            settings: StoreSettings, settings dict, inline datasets or URL
            delayed: Leave the one-time ``init`` hook to the caller
                (the assembler runs it in its lifecycle pass)

        Returns:
            The shared Datastore for the settings signature
        """
        settings = StoreSettings.coerce(settings)
        signature = settings.signature()
        if signature == EMPTY_SIGNATURE:
            self._anonymous += 1
            signature = f"local-{self._anonymous}"

        entry = self._stores.get(signature)
        if entry is None:
            store = await self._build(settings, signature)
        elif isinstance(entry, Datastore):
            logger.debug(f"[registry] Reusing datastore: {signature}")
            store = entry
        else:
            store = await asyncio.shield(entry)

        if not delayed:
            await store.run_hook("init")
        return store

    def is_loading(self, settings: Any) -> bool:
        """True while the datastore for these settings is under construction."""
        signature = StoreSettings.coerce(settings).signature()
        return isinstance(self._stores.get(signature), asyncio.Future)

    def has(self, settings: Any) -> bool:
        return StoreSettings.coerce(settings).signature() in self._stores

    def clear(self) -> None:
        """Forget all datastores, including those still under construction."""
        self._stores = {}
        logger.debug("[registry] Cleared datastores")

    async def close(self) -> None:
        """Close remote connections of every datastore and forget them."""
        stores = [entry for entry in self._stores.values() if isinstance(entry, Datastore)]
        self._stores.clear()
        for store in stores:
            await store.close()

    # =========================================================================
    # Construction
    # =========================================================================

    async def _build(self, settings: StoreSettings, signature: str) -> Datastore:
        pending = asyncio.get_running_loop().create_future()
        self._stores[signature] = pending

        try:
            store = await self._create(settings, signature)
        except asyncio.CancelledError:
            self._forget(signature, pending)
            pending.cancel()
            raise
        except Exception as e:
            self._forget(signature, pending)
            pending.set_exception(e)
            # Waiters re-raise it; nobody else needs to retrieve it
            pending.exception()
            raise

        if self._stores.get(signature) is pending:
            self._stores[signature] = store
            logger.info(f"[registry] Created tier-{store.tier} datastore: {signature}")
        else:
            logger.debug(f"[registry] Registry cleared while building {signature}; not registered")
        pending.set_result(store)
        return store

    def _forget(self, signature: str, pending: asyncio.Future) -> None:
        if self._stores.get(signature) is pending:
            del self._stores[signature]

    async def _create(self, settings: StoreSettings, signature: str) -> Datastore:
        context = self._context

        local = settings.local
        if isinstance(local, str):
            local = await context.loader.load(local)
        local = clone(local)

        remote = None
        if settings.tier == 3 and not settings.is_realtime:
            remote = RemoteStoreClient(
                settings.url,
                settings=context.settings,
                transport=context.transport,
            )

        store = Datastore(
            settings,
            signature,
            context,
            local=_normalize_local(local),
            remote=remote,
        )

        if settings.tier == 2:
            await context.indexed_store.ensure_store(settings.store_name)

        if settings.is_realtime:
            socket = await context.socket_factory(settings.url)
            channel = RealtimeChannel(socket, settings.url, on_push=store.apply_push)
            store.attach_channel(channel)
            await channel.open([settings.db_name, settings.store_name, *(settings.datasets or [])])

        return store


def _normalize_local(local: Any) -> dict[Any, dict[str, Any]]:
    """Turn a list of datasets or a key -> dataset mapping into the cache form."""
    if not local:
        return {}
    if isinstance(local, list):
        return {cache_key(d["key"]): d for d in local if is_dataset(d) and "key" in d}
    if isinstance(local, dict):
        normalized = {}
        for key, dataset in local.items():
            if not is_dataset(dataset):
                continue
            dataset.setdefault("key", key)
            normalized[cache_key(dataset["key"])] = dataset
        return normalized
    logger.warning(f"[registry] Ignored unsupported local datasets: {type(local).__name__}")
    return {}
