"""
Chat App Example

This example demonstrates declarative instance assembly:
1. Define components with lifecycle hooks
2. Describe the instance tree with dependency descriptors
3. Let Knit resolve datastores, nested instances and lazy parts

Run: python -m examples.01-chat-app.main
"""

import asyncio
import logging

from knit import (
    ComponentDefinition,
    Get,
    Instance,
    InstanceRef,
    KnitContext,
    Proxy,
    Store,
)

# =============================================================================
# Components
# =============================================================================


class MessageList(Instance):
    """Renders the messages of a chat room."""

    async def ready(self):
        messages = await self.store.get({"room": self.room})
        self.lines = [f"{m['author']['name']}: {m['text']}" for m in messages]


class Settings(Instance):
    """Rarely used settings panel, only built when opened."""

    def start(self):
        print(f"  settings panel opened for {self.parent.user['name']}")


class ChatApp(Instance):
    """Root instance wiring user, messages and settings together."""

    def ready(self):
        # Children are ready before their parent
        self.title = f"#{self.room} ({len(self.messages.lines)} messages)"


message_list = ComponentDefinition(name="messages", instance_class=MessageList)
settings_panel = ComponentDefinition(name="settings", instance_class=Settings)
chat_app = ComponentDefinition(
    name="chat",
    version="1.0.0",
    config={"room": "general"},
    instance_class=ChatApp,
)


# =============================================================================
# Main
# =============================================================================


async def main():
    logging.basicConfig(level=logging.INFO)

    async with KnitContext() as knit:
        users = {"store_name": "users"}
        messages = {"store_name": "messages"}

        await knit.set(users, {"key": "john", "name": "John"})
        await knit.set(
            messages,
            {
                "key": "m1",
                "room": "general",
                "text": "Hello!",
                "author": ["get", users, "john"],
            },
        )

        app = await knit.start(
            chat_app,
            {
                "user": Get(users, "john"),
                "messages": InstanceRef(message_list, {"room": "general", "store": Store(messages)}),
                "settings": Proxy(settings_panel),
            },
        )

        print(app.title)
        for line in app.messages.lines:
            print(" ", line)

        await app.settings.force()


if __name__ == "__main__":
    asyncio.run(main())
