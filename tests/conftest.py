"""
Pytest configuration and fixtures for Knit tests.
"""

import json
import sys
from pathlib import Path

import httpx
import pytest

# Add the repository root to path for imports
# This allows `from knit.runtime import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from knit.config import KnitSettings  # noqa: E402
from knit.runtime import KnitContext  # noqa: E402


class RemoteStoreServer:
    """
    In-memory stand-in for a remote datastore service.

    Answers the {key} / {dataset} / {del} wire contract over
    httpx.MockTransport and records every request body.
    """

    def __init__(self):
        self.datasets: dict = {}
        self.requests: list[dict] = []
        self.error: str | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)

        if self.error is not None:
            return httpx.Response(200, text=self.error)

        if "dataset" in body:
            dataset = body["dataset"]
            stored = self.datasets.setdefault(dataset["key"], {})
            stored.update(dataset)
            return httpx.Response(200, json=stored)

        if "del" in body:
            return httpx.Response(200, json=self.datasets.pop(body["del"], None))

        key = body.get("key")
        if isinstance(key, dict):
            matches = [
                d for d in self.datasets.values()
                if all(d.get(k) == v for k, v in key.items())
            ]
            return httpx.Response(200, json=matches)
        return httpx.Response(200, json=self.datasets.get(key))


@pytest.fixture
def settings():
    """Settings independent of the environment."""
    return KnitSettings()


@pytest.fixture
def remote_server():
    return RemoteStoreServer()


@pytest.fixture
def context(settings, tmp_path, remote_server):
    """Fresh context with HTTP served by the in-memory remote store."""
    return KnitContext(
        settings=settings,
        transport=httpx.MockTransport(remote_server.handle),
        base_dir=tmp_path,
    )
