"""
Knit Datastores.

Tiered get/set/delete over an in-memory cache, a local indexed store and
remote services.
"""

from .datastore import Datastore
from .indexed import IndexedStore, SQLiteIndexedStore
from .registry import StoreRegistry
from .remote import (
    RealtimeChannel,
    RealtimeSocket,
    RemoteStoreClient,
    SocketFactory,
    is_error_sentinel,
    open_websocket,
)
from .settings import StoreSettings

__all__ = [
    "Datastore",
    "IndexedStore",
    "RealtimeChannel",
    "RealtimeSocket",
    "RemoteStoreClient",
    "SQLiteIndexedStore",
    "SocketFactory",
    "StoreRegistry",
    "StoreSettings",
    "is_error_sentinel",
    "open_websocket",
]
