"""
Datastore settings.

The tier of a datastore follows from which settings are present:

    local only              tier 1  in-memory cache
    + store_name            tier 2  local indexed store (SQLite)
    + store_name + url      tier 3  remote service (http, or websocket
                                    when realtime / ws:// url)

Settings reduce to a signature, the canonical JSON of
``{url, dbName, storeName}``. Datastores are shared per signature.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from knit.helpers import filter_properties

SETTINGS_FIELDS = frozenset(
    {
        "local",
        "store_name",
        "storeName",
        "url",
        "db_name",
        "dbName",
        "realtime",
        "datasets",
        "auth",
        "on_change",
    }
)


class StoreSettings(BaseModel):
    """
    Settings for one datastore.

    Attributes:
        local: Initial cache contents: a mapping key -> dataset, a list of
            datasets, or a URL whose loaded content is such a value
        store_name: Named store in the indexed tier or on the remote side
        url: Remote service URL (http(s):// or ws(s)://)
        db_name: Remote database name
        realtime: Use a persistent websocket connection
        datasets: Dataset keys announced in the realtime handshake, i.e. the
            datasets this client wants change notifications for
        auth: Hook returning {"user": ..., "token": ...} (or None) that is
            added to every remote request
        on_change: Hook called with the changed dataset (or deleted key)
            when the remote side pushes an update
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    local: Any = None
    store_name: str | None = Field(None, alias="storeName")
    url: str | None = None
    db_name: str | None = Field(None, alias="dbName")
    realtime: bool = False
    datasets: list[Any] | None = None
    auth: Callable[[], dict[str, Any] | None] | None = None
    on_change: Callable[[Any], Any] | None = None

    @classmethod
    def coerce(cls, value: Any) -> "StoreSettings":
        """
        Normalize the accepted settings forms.

        None -> empty tier-1 store; a string -> tier-1 store seeded from
        that URL; a dict without any settings field -> tier-1 store seeded
        with that dict as inline datasets.
        """
        if isinstance(value, StoreSettings):
            return value.model_copy()
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(local=value)
        if isinstance(value, list):
            return cls(local=value)
        if isinstance(value, dict):
            if not SETTINGS_FIELDS.intersection(value):
                return cls(local=value)
            return cls.model_validate(value)
        raise TypeError(f"Unsupported datastore settings: {value!r}")

    @property
    def tier(self) -> int:
        if self.url:
            return 3
        if self.store_name:
            return 2
        return 1

    @property
    def is_realtime(self) -> bool:
        return self.tier == 3 and (
            self.realtime or self.url.startswith(("ws://", "wss://"))
        )

    def signature(self) -> str:
        """Canonical JSON of {url, dbName, storeName}; "{}" for pure local stores."""
        source = filter_properties(
            {"url": self.url, "dbName": self.db_name, "storeName": self.store_name},
            "url",
            "dbName",
            "storeName",
        )
        return json.dumps(source, sort_keys=True, separators=(",", ":"))
