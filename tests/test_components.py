"""
Tests for component definitions and the component registry.
"""

import asyncio

import pytest

from knit.components import ComponentDefinition, Instance, index_from_url, parse_index
from knit.errors import ComponentNotFoundError, InvalidComponentError

CHAT_MODULE = '''
from knit import Instance


class Chat(Instance):
    def ready(self):
        self.greeting = f"Hello {self.user}"


component = {
    "name": "chat",
    "version": "2.1.0",
    "config": {"user": "guest", "color": "blue"},
    "instance_class": Chat,
}
'''


class TestIndexes:
    """Tests for deriving component indexes."""

    @pytest.mark.parametrize(
        "url,index",
        [
            ("chat.py", "chat"),
            ("components/chat-2.1.0.py", "chat-2-1-0"),
            ("https://cdn.example.com/ccm.chat-2.1.0.min.py", "chat-2-1-0"),
            ("knit.menu.py", "menu"),
            ("Not-A-Component.py", None),
        ],
    )
    def test_index_from_url(self, url, index):
        assert index_from_url(url) == index

    def test_parse_index(self):
        assert parse_index("chat-2-1-0") == ("chat", ("2", "1", "0"))
        assert parse_index("chat") == ("chat", None)


class TestComponentDefinition:
    """Tests for ComponentDefinition."""

    def test_index_with_version(self):
        assert ComponentDefinition(name="chat", version="2.1.0").index == "chat-2-1-0"

    def test_new_instance_counts(self):
        definition = ComponentDefinition(name="chat")
        first = definition.new_instance()
        second = definition.new_instance()
        assert (first.id, first.index) == (1, "chat-1")
        assert (second.id, second.index) == (2, "chat-2")
        assert second.component is definition

    def test_coerce_from_index(self):
        definition = ComponentDefinition.coerce({"index": "menu-1-0-0"})
        assert definition.name == "menu"
        assert definition.version == ("1", "0", "0")

    def test_coerce_rejects_unknown_fields(self):
        with pytest.raises(InvalidComponentError):
            ComponentDefinition.coerce({"name": "chat", "html": "<p>"})

    def test_instance_class_must_subclass_instance(self):
        with pytest.raises(InvalidComponentError):
            ComponentDefinition(name="chat", instance_class=dict)


class TestComponentRegistry:
    """Tests for ComponentRegistry."""

    @pytest.mark.asyncio
    async def test_register_definition_dict(self, context):
        handle = await context.register({"name": "menu", "config": {"entries": []}})

        assert handle.index == "menu"
        assert context.components.has("menu")
        assert (await context.register("menu")).definition is handle.definition

    @pytest.mark.asyncio
    async def test_unknown_index(self, context):
        with pytest.raises(ComponentNotFoundError, match="nothing"):
            await context.register("nothing")

    @pytest.mark.asyncio
    async def test_register_from_file(self, context, tmp_path):
        (tmp_path / "chat-2.1.0.py").write_text(CHAT_MODULE)

        handle = await context.register("chat-2.1.0.py")
        chat = await handle.instance({"user": "john"})

        assert handle.index == "chat-2-1-0"
        assert chat.index == "chat-2-1-0-1"
        assert chat.greeting == "Hello john"
        assert chat.color == "blue"

    @pytest.mark.asyncio
    async def test_file_of_registered_index_is_not_loaded_again(self, context, tmp_path):
        (tmp_path / "chat-2.1.0.py").write_text(CHAT_MODULE)

        first = await context.register("chat-2.1.0.py")
        (tmp_path / "chat-2.1.0.py").unlink()
        second = await context.register("chat-2.1.0.py")

        assert second.definition is first.definition

    @pytest.mark.asyncio
    async def test_init_runs_once_under_concurrency(self, context):
        calls = []

        async def init(definition):
            calls.append(definition.index)
            await asyncio.sleep(0.01)

        definition = {"name": "clock", "init": init}
        handles = await asyncio.gather(*(context.register(dict(definition)) for _ in range(3)))

        assert calls == ["clock"]
        assert len({id(h.definition) for h in handles}) == 1

    @pytest.mark.asyncio
    async def test_config_layers(self, context):
        handle = await context.register(
            ComponentDefinition(name="box", config={"color": "red", "size": 1, "style": {"border": 0, "width": 1}}),
            {"size": 2},
        )

        box = await handle.instance({"color": "green", "style.border": 2})

        assert (box.color, box.size) == ("green", 2)
        assert box.style == {"border": 2, "width": 1}
        assert handle.definition.config == {"color": "red", "size": 1, "style": {"border": 0, "width": 1}}

    @pytest.mark.asyncio
    async def test_handle_start_calls_start_hook(self, context):
        class Clock(Instance):
            started = 0

            async def start(self):
                self.started += 1

        handle = await context.register({"name": "clock", "instance_class": Clock})
        clock = await handle.start()

        assert clock.started == 1
