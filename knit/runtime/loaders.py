"""
Resource Loader.

Loads named resources (by URL or local path) exactly once per loader.

Design Principle:
    At most one fetch per URL is ever in flight. A second request for a
    URL that is still loading does not fetch again; it joins that URL's
    waitlist and receives the same value once the first fetch completes.

Resource kinds (by suffix):
    .json                   parsed JSON
    .py                     component module (local files only); the
                            module's ``component`` attribute if present
    .png .jpg .gif .svg     raw bytes
    .html .css .txt .js .md text
    anything else           data exchange: JSON if the body parses, else text

A resource with ``params`` is always a data exchange and is never cached,
and neither is a resource loaded in an explicit ``context``.

Usage:
    loader = ResourceLoader()
    config = await loader.load("configs/chat.json")
    style, data = await loader.load("style.css", {"url": "https://api/x", "params": {"q": 1}})

    # Serial loading: inner lists load one after another
    first, second = await loader.load(["a.json", "b.json"])
"""

from __future__ import annotations

import asyncio
import importlib.util
import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict, Field

from knit.config import KnitSettings, get_settings
from knit.errors import ResourceLoadError

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".svg"}
TEXT_SUFFIXES = {".html", ".css", ".txt", ".js", ".md"}

# Released to coalesced waiters when the owning load is cancelled
_ABANDONED = object()


class Resource(BaseModel):
    """Description of a single resource to load."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    url: str = Field(..., description="URL or local path")
    params: dict[str, Any] | None = Field(None, description="Data exchange parameters")
    context: Any = Field(None, description="Loading context; disables caching")
    ignore_cache: bool = False
    username: str | None = None
    password: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> "Resource":
        if isinstance(value, Resource):
            return value
        if isinstance(value, str):
            return cls(url=value)
        if isinstance(value, dict):
            return cls.model_validate(value)
        raise ResourceLoadError(f"Unsupported resource description: {value!r}", str(value))

    @property
    def cacheable(self) -> bool:
        return not (self.ignore_cache or self.context is not None or self.params is not None)

    @property
    def suffix(self) -> str:
        return Path(urlparse(self.url).path).suffix.lower()

    @property
    def is_remote(self) -> bool:
        return urlparse(self.url).scheme in ("http", "https")


class ResourceLoader:
    """
    Loads resources with per-URL de-duplication.

    Loaded values are cached for the lifetime of the loader (until
    ``clear()``). While a URL is loading, further requests for it are
    parked on a waitlist and released when the fetch completes. The
    waitlist is drained from its end, so the most recent waiter is
    released first.
    """

    def __init__(
        self,
        *,
        settings: KnitSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_dir: str | Path | None = None,
    ):
        """
        Initialize loader.

        Args:
            settings: Runtime settings (defaults to environment settings)
            transport: Optional httpx transport (tests use MockTransport)
            base_dir: Directory relative local paths are resolved against
        """
        self._settings = settings or get_settings()
        self._transport = transport
        self._base_dir = Path(base_dir) if base_dir else None
        self._client: httpx.AsyncClient | None = None

        self._resources: dict[str, Any] = {}
        self._loading: set[str] = set()
        self._waitlists: dict[str, list[asyncio.Future]] = {}
        self._module_counter = 0

    # =========================================================================
    # Public API
    # =========================================================================

    async def load(self, *resources: Any) -> Any:
        """
        Load one or more resources concurrently.

        Args:
            *resources: URLs, Resource objects, resource dicts, or lists
                (a list is loaded serially; a list inside a serial list is
                loaded concurrently again)

        Returns:
            The single result if one resource was given, else a list of
            results in input order
        """
        results = await asyncio.gather(*(self._load_item(r) for r in resources))
        if len(results) <= 1:
            return results[0] if results else None
        return list(results)

    def is_loaded(self, url: str) -> bool:
        return url in self._resources

    def is_loading(self, url: str) -> bool:
        return url in self._loading

    def clear(self) -> None:
        """Forget all cached resources."""
        self._resources.clear()
        logger.debug("[loader] Cleared resource cache")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Loading
    # =========================================================================

    async def _load_item(self, item: Any) -> Any:
        if isinstance(item, list):
            return await self._load_serial(item)

        resource = Resource.coerce(item)

        if not resource.cacheable:
            return await self._fetch(resource)

        url = resource.url

        if url in self._resources:
            logger.debug(f"[loader] Cache hit: {url}")
            return self._resources[url]

        if url in self._loading:
            logger.debug(f"[loader] Waiting for in-flight load: {url}")
            waiter = asyncio.get_running_loop().create_future()
            self._waitlists.setdefault(url, []).append(waiter)
            value = await waiter
            if value is _ABANDONED:
                # The owning load was cancelled; fetch again (first waiter owns it)
                return await self._load_item(resource)
            return value

        self._loading.add(url)
        try:
            value = await self._fetch(resource)
        except asyncio.CancelledError:
            self._loading.discard(url)
            self._release(url, value=_ABANDONED)
            raise
        except Exception as e:
            self._loading.discard(url)
            self._release(url, error=e)
            raise

        self._resources[url] = value
        self._loading.discard(url)
        self._release(url, value=value)
        return value

    async def _load_serial(self, items: list[Any]) -> list[Any]:
        results = []
        for item in items:
            if isinstance(item, list):
                results.append(await self.load(*item))
            else:
                results.append(await self._load_item(item))
        return results

    def _release(
        self,
        url: str,
        *,
        value: Any = None,
        error: Exception | None = None,
    ) -> None:
        waiters = self._waitlists.pop(url, [])
        while waiters:
            waiter = waiters.pop()
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(value)

    async def _fetch(self, resource: Resource) -> Any:
        suffix = resource.suffix
        logger.info(f"[loader] Loading {resource.url}")

        if resource.params is not None:
            return await self._exchange(resource)
        if suffix == ".py":
            return await self._load_module(resource)
        if suffix == ".json":
            return json.loads(await self._read_text(resource))
        if suffix in IMAGE_SUFFIXES:
            return await self._read_bytes(resource)
        if suffix in TEXT_SUFFIXES:
            return await self._read_text(resource)
        return await self._exchange(resource)

    async def _exchange(self, resource: Resource) -> Any:
        text = await self._read_text(resource)
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def _load_module(self, resource: Resource) -> Any:
        if resource.is_remote:
            raise ResourceLoadError("Component modules must be local files", resource.url)

        path = self._local_path(resource.url)
        if not path.exists():
            raise ResourceLoadError("File not found", resource.url)

        self._module_counter += 1
        name = f"knit_component_{path.stem.replace('.', '_').replace('-', '_')}_{self._module_counter}"
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise ResourceLoadError("Not an importable module", resource.url)

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return getattr(module, "component", module)

    # =========================================================================
    # I/O
    # =========================================================================

    async def _read_text(self, resource: Resource) -> str:
        if resource.is_remote:
            response = await self._request(resource)
            return response.text
        data = await self._read_local(resource)
        return data.decode("utf-8")

    async def _read_bytes(self, resource: Resource) -> bytes:
        if resource.is_remote:
            response = await self._request(resource)
            return response.content
        return await self._read_local(resource)

    async def _read_local(self, resource: Resource) -> bytes:
        path = self._local_path(resource.url)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ResourceLoadError(f"Cannot read file: {e}", resource.url) from e

    def _local_path(self, url: str) -> Path:
        if url.startswith("file://"):
            url = urlparse(url).path
        path = Path(url)
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        return path

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, resource: Resource) -> httpx.Response:
        client = await self._get_client()
        auth = None
        if resource.username and resource.password:
            auth = httpx.BasicAuth(resource.username, resource.password)

        try:
            response = await client.get(
                resource.url,
                params=encode_params(resource.params) if resource.params else None,
                auth=auth,
            )
        except httpx.TimeoutException as e:
            raise ResourceLoadError(f"Request timeout: {e}", resource.url) from e
        except httpx.HTTPError as e:
            raise ResourceLoadError(f"Network error: {e}", resource.url) from e

        if not response.is_success:
            raise ResourceLoadError(
                f"Request failed: {response.text[:200]}",
                resource.url,
                status_code=response.status_code,
            )
        return response


def encode_params(data: dict[str, Any], prefix: str | None = None) -> list[tuple[str, str]]:
    """
    Flatten nested parameters into query pairs.

    {"dataset": {"key": "x"}} becomes [("dataset[key]", "x")].
    """
    pairs: list[tuple[str, str]] = []
    items = data.items() if isinstance(data, dict) else enumerate(data)
    for key, value in items:
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, (dict, list)):
            pairs.extend(encode_params(value, name))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        elif value is None:
            pairs.append((name, ""))
        else:
            pairs.append((name, str(value)))
    return pairs
