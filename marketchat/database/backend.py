import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from marketchat.config import Settings
from marketchat.database.connection import close_mongo_connection, connect_to_mongo
from marketchat.errors import ChatError, ValidationError
from marketchat.repositories.base import ConversationStore, MessageStore, ObjectStore, ProfileStore
from marketchat.repositories.memory import memory_stores
from marketchat.utils.realtime_bus import LocalBus, create_bus


logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """The concrete adapters behind every port, plus the live change bus."""

    name: str
    conversations: ConversationStore
    messages: MessageStore
    profiles: ProfileStore
    objects: ObjectStore
    bus: Any

    @property
    def stores(self) -> List[Any]:
        return [self.conversations, self.messages, self.profiles, self.objects]

    async def ensure_schema(self) -> None:
        for store in self.stores:
            await store.ensure_schema()
        logger.info("Schema provisioned for %s backend", self.name)

    async def describe(self) -> Dict[str, Any]:
        probes = {
            self.conversations.name: lambda: self.conversations.list_for_user("-", 1),
            self.messages.name: lambda: self.messages.count_unread("-"),
            self.profiles.name: lambda: self.profiles.get("-"),
        }
        collections: Dict[str, str] = {}
        for name, probe in probes.items():
            try:
                await probe()
                collections[name] = "ok"
            except ChatError as exc:
                collections[name] = exc.kind
        return {"backend": self.name, "bus": self.bus.name, "collections": collections}


def memory_backend(settings: Settings, provisioned: bool = True) -> Backend:
    stores = memory_stores(settings.public_base_url, provisioned)
    return Backend(name="memory", bus=LocalBus(), **stores)


async def open_backend(settings: Settings) -> Backend:
    if settings.backend == "memory":
        return Backend(name="memory", bus=create_bus(settings.redis_url), **memory_stores(settings.public_base_url))
    if settings.backend != "mongo":
        raise ValidationError(f"unknown backend {settings.backend!r}", field="backend")

    from marketchat.repositories.conversation_repository import ConversationRepository
    from marketchat.repositories.message_repository import MessageRepository
    from marketchat.repositories.object_storage import GridFSObjectStore
    from marketchat.repositories.user_repository import UserRepository

    db = await connect_to_mongo(settings)
    return Backend(
        name="mongo",
        conversations=ConversationRepository(db, settings.migration_check),
        messages=MessageRepository(db, settings.migration_check),
        profiles=UserRepository(db, settings.migration_check),
        objects=GridFSObjectStore(db, settings.public_base_url, settings.attachments_bucket),
        bus=create_bus(settings.redis_url),
    )


async def close_backend(backend: Backend) -> None:
    await backend.bus.close()
    if backend.name == "mongo":
        await close_mongo_connection()
