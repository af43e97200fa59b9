"""Store ports. Services depend on these only; one adapter per backing service."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from marketchat.models.conversation import ConversationDocument
from marketchat.models.message import ContentKind, MessageContentDocument, MessageDocument
from marketchat.models.user import ProfileDocument


class ConversationStore(ABC):

    name = "conversations"

    @abstractmethod
    async def ensure_schema(self) -> None: ...

    @abstractmethod
    async def find_between(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        """Oldest conversation pairing the two users, in either orientation."""

    @abstractmethod
    async def get_or_create(
        self, initiator_id: str, counterpart_id: str, external: bool
    ) -> ConversationDocument:
        """Atomic find-or-insert keyed by (initiator, counterpart)."""

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]: ...

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 50) -> List[ConversationDocument]:
        """Conversations the user is part of, most recently active first."""

    @abstractmethod
    async def touch(self, conversation_id: str, preview: str, at: datetime) -> None: ...


class MessageStore(ABC):

    name = "messages"

    @abstractmethod
    async def ensure_schema(self) -> None: ...

    @abstractmethod
    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        recipient_id: str,
        content: MessageContentDocument,
        kind: ContentKind,
    ) -> MessageDocument: ...

    @abstractmethod
    async def list_page(self, conversation_id: str, offset: int, limit: int) -> List[MessageDocument]:
        """Newest first."""

    @abstractmethod
    async def mark_read(
        self,
        recipient_id: str,
        conversation_id: Optional[str] = None,
        message_ids: Optional[Sequence[str]] = None,
    ) -> List[MessageDocument]:
        """Flip read to true; returns only the messages that changed."""

    @abstractmethod
    async def count_unread(self, recipient_id: str, conversation_id: Optional[str] = None) -> int: ...

    @abstractmethod
    async def unread_by_conversation(self, recipient_id: str) -> Dict[str, int]: ...


class ProfileStore(ABC):

    name = "profiles"

    @abstractmethod
    async def ensure_schema(self) -> None: ...

    @abstractmethod
    async def get(self, user_id: str) -> Optional[ProfileDocument]: ...

    @abstractmethod
    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, ProfileDocument]: ...

    @abstractmethod
    async def upsert(self, user_id: str, full_name: Optional[str], avatar_url: Optional[str] = None) -> None: ...

    @abstractmethod
    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        """False when the user has no profile to update."""


@dataclass
class StoredObject:

    path: str
    data: bytes
    content_type: str


class ObjectStore(ABC):

    name = "objects"

    @abstractmethod
    async def ensure_schema(self) -> None: ...

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def open(self, path: str) -> Optional[StoredObject]: ...

    @abstractmethod
    def public_url(self, path: str) -> str: ...
