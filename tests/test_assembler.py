"""
Tests for the instance assembler.

Tests for:
- Breadth-first resolution and lifecycle order
- Every descriptor kind inside instance configuration
- Configuration by key
- Lazy instances and auto-start
- Stalled dependencies
"""

import asyncio
import json

import httpx
import pytest

from knit.components import ComponentDefinition, ComponentHandle, Instance
from knit.config import KnitSettings
from knit.dependencies import (
    ComponentRef,
    Delete,
    Get,
    InstanceRef,
    Load,
    Proxy,
    Set,
    Store,
)
from knit.errors import ComponentNotFoundError, StalledDependencyError
from knit.runtime import KnitContext, LazyInstance
from knit.store import Datastore

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def events():
    return []


@pytest.fixture
def node(events):
    """Component whose instances record their lifecycle hooks."""

    class Node(Instance):
        async def init(self):
            events.append(("init", self.name))

        async def ready(self):
            events.append(("ready", self.name))

        async def start(self):
            events.append(("start", self.name))

    return ComponentDefinition(name="node", config={"name": "?"}, instance_class=Node)


def tree(node):
    """A -> (B -> D), C"""
    return {
        "name": "A",
        "b": InstanceRef(node, {"name": "B", "d": InstanceRef(node, {"name": "D"})}),
        "c": InstanceRef(node, {"name": "C"}),
    }


# =============================================================================
# Ordering
# =============================================================================


class TestOrdering:
    """Tests for breadth-first resolution and hook order."""

    @pytest.mark.asyncio
    async def test_ready_children_before_parents(self, context, node, events):
        await context.instance(node, tree(node))

        ready = [name for hook, name in events if hook == "ready"]
        assert ready == ["D", "B", "C", "A"]

    @pytest.mark.asyncio
    async def test_init_in_discovery_order_before_any_ready(self, context, node, events):
        await context.instance(node, tree(node))

        assert events[:4] == [("init", "A"), ("init", "B"), ("init", "C"), ("init", "D")]

    @pytest.mark.asyncio
    async def test_siblings_are_built_before_grandchildren(self, context, node):
        a = await context.instance(node, tree(node))

        assert a.b.id < a.c.id < a.b.d.id

    @pytest.mark.asyncio
    async def test_parent_references(self, context, node):
        a = await context.instance(node, tree(node))

        assert a.parent is None
        assert a.b.parent is a
        assert a.b.d.parent is a.b
        assert a.b.d.index == f"node-{a.b.d.id}"

    @pytest.mark.asyncio
    async def test_hooks_run_once(self, context, node, events):
        a = await context.instance(node, {"name": "A"})
        await a.run_hook("ready")

        assert events == [("init", "A"), ("ready", "A")]

    @pytest.mark.asyncio
    async def test_tagged_lists_from_json(self, context, node, tmp_path, events):
        await context.register(node)
        (tmp_path / "app.json").write_text(
            json.dumps({"name": "A", "kids": [["instance", "node", {"name": "K"}]]})
        )

        a = await context.instance("node", Load("app.json"))

        assert isinstance(a.kids[0], Instance)
        assert a.kids[0].name == "K"
        assert ("ready", "K") in events


# =============================================================================
# Descriptors
# =============================================================================


class TestDescriptors:
    """Tests for each descriptor kind inside instance configuration."""

    @pytest.mark.asyncio
    async def test_load_at_any_depth(self, context, node, tmp_path):
        (tmp_path / "style.css").write_text("p {}")
        (tmp_path / "data.json").write_text('{"n": 1}')

        a = await context.instance(
            node,
            {"assets": {"style": Load("style.css")}, "data": [Load("data.json"), 5]},
        )

        assert a.assets == {"style": "p {}"}
        assert a.data == [{"n": 1}, 5]

    @pytest.mark.asyncio
    async def test_caller_config_is_not_mutated(self, context, node, tmp_path):
        (tmp_path / "style.css").write_text("p {}")
        config = {"assets": {"style": Load("style.css")}}

        await context.instance(node, config)

        assert isinstance(config["assets"]["style"], Load)

    @pytest.mark.asyncio
    async def test_store_descriptor_is_initialized_in_lifecycle_pass(self, context, node):
        a = await context.instance(node, {"store": Store({"store_name": "chat"})})

        assert isinstance(a.store, Datastore)
        assert a.store is await context.store({"store_name": "chat"})
        assert not a.store.has_pending_hook("init")

    @pytest.mark.asyncio
    async def test_get_set_delete(self, context, node):
        await context.set({"store_name": "texts"}, {"key": "hello", "text": "Hello"})
        await context.set({"store_name": "texts"}, {"key": "old"})

        a = await context.instance(
            node,
            {
                "greeting": Get({"store_name": "texts"}, "hello.text"),
                "saved": Set({"store_name": "texts"}, {"key": "new", "n": 1}),
                "removed": Delete({"store_name": "texts"}, "old"),
            },
        )

        assert a.greeting == "Hello"
        assert a.saved == {"key": "new", "n": 1}
        assert a.removed == {"key": "old"}
        assert await context.get({"store_name": "texts"}, "old") is None

    @pytest.mark.asyncio
    async def test_component_descriptor_passes_parent(self, context, node):
        a = await context.instance(node, {"name": "A", "kind": ComponentRef(node, {"name": "X"})})

        assert isinstance(a.kind, ComponentHandle)
        x = await a.kind.instance()
        assert x.name == "X"
        assert x.parent is a

    @pytest.mark.asyncio
    async def test_resolved_values_are_not_rescanned(self, context, node):
        other = await context.instance(node, {"name": "O"})

        a = await context.instance(node, {"friend": other, "def": node})

        assert a.friend is other
        assert a.friend.parent is None
        assert getattr(a, "def") is node

    @pytest.mark.asyncio
    async def test_component_by_file(self, context, tmp_path):
        (tmp_path / "menu-1.0.0.py").write_text(
            'component = {"name": "menu", "version": "1.0.0", "config": {"entries": ["home"]}}\n'
        )

        menu = await context.instance("menu-1.0.0.py", {"title": "Main"})

        assert menu.index == "menu-1-0-0-1"
        assert (menu.entries, menu.title) == (["home"], "Main")

    @pytest.mark.asyncio
    async def test_unknown_component(self, context, node):
        with pytest.raises(ComponentNotFoundError):
            await context.instance(node, {"child": InstanceRef("missing")})

    @pytest.mark.asyncio
    async def test_reserved_properties_are_ignored(self, context, node):
        a = await context.instance(node, {"id": 99, "index": "x"})

        assert a.id == 1
        assert a.index == "node-1"


# =============================================================================
# Configuration by key
# =============================================================================


class TestConfigByKey:
    """Tests for configurations provided by a key property."""

    @pytest.mark.asyncio
    async def test_key_dict(self, context, node):
        a = await context.instance(node, {"key": {"name": "base", "x": 1, "y": 1}, "x": 2})

        assert (a.name, a.x, a.y) == ("base", 2, 1)
        assert not hasattr(a, "key")

    @pytest.mark.asyncio
    async def test_key_from_datastore(self, context, node):
        await context.set({"store_name": "configs"}, {"key": "demo", "name": "stored", "x": 1})

        a = await context.instance(node, {"key": Get({"store_name": "configs"}, "demo"), "x": 2})

        assert (a.name, a.x) == ("stored", 2)
        assert not hasattr(a, "key")

    @pytest.mark.asyncio
    async def test_key_from_file(self, context, node, tmp_path):
        (tmp_path / "demo.json").write_text(json.dumps({"key": "demo", "name": "file", "x": 1}))

        a = await context.instance(node, {"key": ["load", "demo.json"], "x": 3})

        assert (a.name, a.x) == ("file", 3)
        assert not hasattr(a, "key")

    @pytest.mark.asyncio
    async def test_plain_key_is_kept(self, context, node):
        a = await context.instance(node, {"key": "demo"})

        assert a.key == "demo"


# =============================================================================
# Lazy instances and start
# =============================================================================


class TestLazyAndStart:
    """Tests for proxy placeholders and auto-start."""

    @pytest.mark.asyncio
    async def test_proxy_is_built_only_when_forced(self, context, node, events):
        a = await context.instance(node, {"name": "A", "menu": Proxy(node, {"name": "M"})})

        lazy = a.menu
        assert isinstance(lazy, LazyInstance)
        assert all(name != "M" for _, name in events)

        menu = await lazy.force()

        assert a.menu is menu
        assert menu.parent is a
        assert events[-3:] == [("init", "M"), ("ready", "M"), ("start", "M")]
        assert await lazy.force() is menu

    @pytest.mark.asyncio
    async def test_concurrent_force_builds_once(self, context, node):
        a = await context.instance(node, {"menu": Proxy(node, {"name": "M"})})
        lazy = a.menu

        first, second = await asyncio.gather(lazy.force(), lazy.force())

        assert first is second

    @pytest.mark.asyncio
    async def test_auto_start_after_lifecycle(self, context, node, events):
        await context.instance(
            node,
            {"name": "A", "b": InstanceRef(node, {"name": "B"}, start=True)},
        )

        assert events == [
            ("init", "A"),
            ("init", "B"),
            ("ready", "B"),
            ("ready", "A"),
            ("start", "B"),
        ]

    @pytest.mark.asyncio
    async def test_start_root(self, context, node, events):
        await context.start(node, {"name": "A"})

        assert events[-1] == ("start", "A")


# =============================================================================
# Stalls
# =============================================================================


class TestStalls:
    """Tests for dependency_timeout."""

    @pytest.mark.asyncio
    async def test_stalled_load_raises(self, tmp_path, node):
        async def never(request):
            await asyncio.sleep(10)
            return httpx.Response(200, text="late")

        settings = KnitSettings(dependency_timeout=0.05)
        async with KnitContext(settings, transport=httpx.MockTransport(never)) as context:
            with pytest.raises(StalledDependencyError) as exc_info:
                await context.instance(node, {"data": Load("https://example.com/slow.txt")})

            assert isinstance(exc_info.value.dependency, Load)
            assert not context.loader.is_loading("https://example.com/slow.txt")

    @pytest.mark.asyncio
    async def test_stall_does_not_cancel_concurrent_load(self, node):
        url = "https://example.com/slow.txt"
        calls = []

        async def slow(request):
            calls.append(request)
            await asyncio.sleep(0.3)
            return httpx.Response(200, text="late")

        settings = KnitSettings(dependency_timeout=0.05)
        async with KnitContext(settings, transport=httpx.MockTransport(slow)) as context:
            assembling = asyncio.ensure_future(context.instance(node, {"data": Load(url)}))
            await asyncio.sleep(0.01)
            assert context.loader.is_loading(url)

            loading = asyncio.ensure_future(context.load(url))

            with pytest.raises(StalledDependencyError):
                await assembling
            assert await loading == "late"
            assert len(calls) == 2
            assert context.loader.is_loaded(url)
