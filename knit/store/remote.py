"""
Remote datastore transport (tier 3).

Wire contract:
    read    {"key": key_or_query}
    write   {"dataset": priodata}
    delete  {"del": key}
each optionally extended with storeName, dbName, user and token.

The response is a dataset, a list of datasets, or a string. A string
where a record was expected is the error sentinel: the caller aborts its
local-cache update. HTTP-level failures raise RemoteStoreError subclasses.

Two transports:
    RemoteStoreClient   one POST per request (httpx)
    RealtimeChannel     persistent websocket (aiohttp). Requests carry a
                        ``callback`` sequence number, the 1-based position
                        of the pending request; the server echoes it back
                        as {"callback": n, "data": ...}. Messages without
                        a callback number are pushes from other clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import aiohttp
import httpx

from knit.config import KnitSettings
from knit.errors import RemoteAuthError, RemoteNotFoundError, RemoteStoreError

logger = logging.getLogger(__name__)


def is_error_sentinel(response: Any) -> bool:
    """A string response means the remote side reported an error."""
    return isinstance(response, str)


# =============================================================================
# HTTP
# =============================================================================


class RemoteStoreClient:
    """
    HTTP client for a remote datastore endpoint.

    Retries only transport failures flagged retryable (timeouts, network
    errors, 5xx) and only if ``remote_max_retries`` is above zero.
    """

    def __init__(
        self,
        url: str,
        *,
        settings: KnitSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(self, payload: dict[str, Any]) -> Any:
        """
        Send one request, retrying retryable failures.

        Returns:
            Decoded JSON body, or the raw text if the body is not JSON

        Raises:
            RemoteStoreError: On any non-retryable error or after max retries
        """
        max_retries = self._settings.remote_max_retries

        for attempt in range(max_retries + 1):
            try:
                return await self._do_send(payload)
            except RemoteStoreError as e:
                if not e.retryable or attempt >= max_retries:
                    raise

                backoff = self._calculate_backoff(attempt)
                logger.info(
                    f"[remote] Retry {attempt + 1}/{max_retries} for {self.url} "
                    f"after {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

        raise RemoteStoreError("Unknown error", self.url)

    def _calculate_backoff(self, attempt: int) -> float:
        base_delay = self._settings.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return min(base_delay + jitter, 60.0)

    async def _do_send(self, payload: dict[str, Any]) -> Any:
        client = await self._get_client()

        if self._settings.log_requests:
            logger.debug(f"[remote] POST {self.url} body={payload}")

        try:
            response = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise RemoteStoreError(f"Request timeout: {e}", self.url, retryable=True) from e
        except httpx.NetworkError as e:
            raise RemoteStoreError(f"Network error: {e}", self.url, retryable=True) from e

        self._check_response(response)

        try:
            return response.json()
        except ValueError:
            return response.text

    def _check_response(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        status = response.status_code
        body = response.text

        if status in (401, 403):
            raise RemoteAuthError(
                f"Authentication failed: {body}", self.url, status_code=status, response_body=body
            )
        if status == 404:
            raise RemoteNotFoundError(
                f"Endpoint not found: {body}", self.url, status_code=status, response_body=body
            )
        raise RemoteStoreError(
            f"Request failed: {body}",
            self.url,
            status_code=status,
            response_body=body,
            retryable=status >= 500,
        )


# =============================================================================
# Realtime
# =============================================================================


class RealtimeSocket(Protocol):
    """Minimal bidirectional text socket."""

    async def send_str(self, data: str) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[str]:
        ...

    async def close(self) -> None:
        ...


SocketFactory = Callable[[str], Awaitable[RealtimeSocket]]


class AiohttpSocket:
    """RealtimeSocket backed by an aiohttp websocket connection."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._session = session
        self._ws = ws

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    async def __aiter__(self) -> AsyncIterator[str]:
        async for message in self._ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                yield message.data
            elif message.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                break

    async def close(self) -> None:
        await self._ws.close()
        await self._session.close()


async def open_websocket(url: str) -> RealtimeSocket:
    """Connect to a realtime datastore endpoint."""
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, protocols=("knit",))
    except aiohttp.ClientError as e:
        await session.close()
        raise RemoteStoreError(f"Websocket connection failed: {e}", url, retryable=True) from e
    logger.info(f"[remote] Connected realtime socket: {url}")
    return AiohttpSocket(session, ws)


class RealtimeChannel:
    """
    Request/response matching over a persistent socket.

    Example:
        channel = RealtimeChannel(socket, url, on_push=store.apply_push)
        await channel.open(["db", "chat"])
        dataset = await channel.request({"key": "greeting"})
    """

    def __init__(
        self,
        socket: RealtimeSocket,
        url: str,
        *,
        on_push: Callable[[Any], None],
    ):
        self.url = url
        self._socket = socket
        self._on_push = on_push
        self._callbacks: list[asyncio.Future] = []
        self._listener: asyncio.Task | None = None

    async def open(self, initial_message: list[Any]) -> None:
        """Send the handshake message."""
        await self._socket.send_str(json.dumps(initial_message))

    def listen(self) -> None:
        """Start dispatching incoming messages."""
        if self._listener is None:
            self._listener = asyncio.ensure_future(self._listen())

    async def request(self, payload: dict[str, Any]) -> Any:
        waiter = asyncio.get_running_loop().create_future()
        self._callbacks.append(waiter)
        message = {**payload, "callback": len(self._callbacks)}
        await self._socket.send_str(json.dumps(message))
        return await waiter

    async def _listen(self) -> None:
        async for raw in self._socket:
            self.dispatch(raw)
        logger.info(f"[remote] Realtime socket closed: {self.url}")

    def dispatch(self, raw: str) -> None:
        message = json.loads(raw)

        if isinstance(message, dict) and message.get("callback"):
            position = int(message["callback"]) - 1
            if 0 <= position < len(self._callbacks):
                waiter = self._callbacks[position]
                if not waiter.done():
                    waiter.set_result(message.get("data"))
            else:
                logger.warning(f"[remote] Response for unknown request {message['callback']}")
            return

        self._on_push(message)

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self._socket.close()
